"""Select, build and launch NixOS development VMs for AI coding agents."""

__version__ = '0.1.0'
