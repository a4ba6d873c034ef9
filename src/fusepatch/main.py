import typer

import fusepatch.cmd.repository
import fusepatch.constants

app = typer.Typer()
app.add_typer(fusepatch.cmd.repository.repository_app, name="repository")


@app.command()
def version():
    print(fusepatch.constants.fusepatch_version)


def main():
    app()
