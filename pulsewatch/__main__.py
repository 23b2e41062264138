from pulsewatch.cli.main import app

app()
