from invoke.tasks import task
from invoke.context import Context

FUNCTIONAL_SCRIPTS = ("tests/functional/local-test.py", "tests/functional/local-test-stream.py")


@task
def lint(c: Context) -> None:
    """
    Format and lint
    """
    c.run("uv run ruff check src tests tasks.py --fix")
    c.run("uv run black src tests tasks.py")


@task
def type_check(c: Context) -> None:
    c.run("uv run mypy src tasks.py")


@task
def test(c: Context) -> None:
    c.run("uv run pytest tests/unit --disable-warnings -v")


@task(help={"config": "config file for the relay, defaults to ./config.json"})
def serve(c: Context, config: str = "") -> None:
    """Run the relay with the configured bind address."""
    env = {"COPILOT_RELAY_CONFIG_PATH": config} if config else {}
    c.run("uv run copilot-relay", env=env, pty=True)


@task(help={"url": "base URL of a running relay", "debug": "print raw upstream payloads"})
def functional(c: Context, url: str = "http://127.0.0.1:8181", debug: bool = False) -> None:
    """Send a chat and a streamed code completion through a running relay."""
    env = {"RELAY_URL": url, "DEBUG": "1" if debug else "0"}
    for script in FUNCTIONAL_SCRIPTS:
        c.run(f"uv run python {script}", env=env)


@task
def build(c: Context) -> None:
    lint(c)
    type_check(c)
    test(c)


@task
def clean(c: Context) -> None:
    c.run('find . -type d -name "__pycache__" -exec rm -r {} + || true')
    c.run('find . -type d -name ".mypy_cache" -exec rm -r {} + || true')
    c.run('find . -type d -name ".ruff_cache" -exec rm -r {} + || true')
