"""
CLI entry point, when used as a module: `python -m kmirror`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kmirror").
"""
from kmirror import cli

if __name__ == '__main__':
    cli.main()
