from scanner_its.cli import cli

cli()
