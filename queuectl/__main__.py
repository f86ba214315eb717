from queuectl.cli.main import cli

cli()
