import sys
import json
import logging
import click
from .classify import classify
from .dashboard import Dashboard
from .errors import format_error
from .logging import configure_logging
from .models.news import Category
from .settings import load_settings

logger = logging.getLogger(__name__)

VERSION = "0.2.0"


def _get_dashboard(ctx: click.Context) -> Dashboard:
    obj = ctx.ensure_object(dict)
    if "dashboard" not in obj:
        obj["dashboard"] = Dashboard(load_settings(obj.get("config")))
    return obj["dashboard"]


@click.group()
@click.option("--config", "config_path", default=None, help="Dashboard YAML (default: $PULSEBOARD_CONFIG or dashboard.yaml)")
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """pulseboard: market quotes and headlines for the dashboard."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path


@cli.command()
@click.option("--force", is_flag=True, help="Bypass cache")
@click.pass_context
def quotes(ctx, force):
    """Quote every configured instrument."""
    payload, cached = _get_dashboard(ctx).market(force=force)
    _print_json(payload, cached=cached)


@cli.command()
@click.option("--category", default="all", show_default=True,
              type=click.Choice([c.value for c in Category]), help="News category")
@click.option("--force", is_flag=True, help="Bypass cache")
@click.pass_context
def news(ctx, category, force):
    """Fetch, classify and rank headlines."""
    payload, cached = _get_dashboard(ctx).headlines(Category(category), force=force)
    _print_json(payload, cached=cached)


@cli.command("classify")
@click.argument("title")
def classify_title(title):
    """Show the category a headline would be filed under."""
    _print_json({"title": title, "category": classify(title).value})


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.pass_context
def serve(ctx, host, port):
    """Serve the JSON endpoints with uvicorn."""
    import uvicorn
    from .api import create_app

    if not 0 < port < 65536:
        raise click.BadParameter("--port must be between 1 and 65535.")

    app = create_app(dashboard=_get_dashboard(ctx))
    logger.info(f"Serving on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)


@cli.command()
def version():
    """Print version information."""
    _print_json({"version": VERSION})


def _print_json(data, cached=False):
    """Helper to print standard JSON envelope."""
    payload = {
        "ok": True,
        "data": data,
        "meta": {
            "version": 1,
            "cached": cached
        }
    }
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def main():
    """Entry point for the CLI."""
    try:
        cli(standalone_mode=False)
    except Exception as e:
        if isinstance(e, click.exceptions.Exit):
            sys.exit(e.exit_code)
        if isinstance(e, click.exceptions.Abort):
            sys.exit(130)

        print(format_error(e))
        sys.exit(1)

if __name__ == "__main__":
    main()
