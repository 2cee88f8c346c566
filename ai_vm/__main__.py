"""``python -m ai_vm`` runs the vm-selector command."""

from .cli import main

if __name__ == '__main__':
    main(prog_name='vm-selector')
