from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import User
from app.services.csv_upload import parse_csv_upload, suggest_mapping
from app.services.import_commit import DEFAULT_IMPORT_SOURCE, commit_import
from app.services.import_preview import build_import_preview, require_mapped_columns
from app.services.import_rows import ImportValidationError


@click.command("init-db")
@with_appcontext
def init_db_command():
    db.create_all()
    click.echo("Initialized Linkshelf database.")


@click.command("import-csv")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--username", required=True, help="Owner of the imported links.")
@click.option("--source", default=DEFAULT_IMPORT_SOURCE, show_default=True)
@click.option("--dry-run", is_flag=True, help="Only print the preview summary.")
@click.option("--url-column")
@click.option("--title-column")
@click.option("--comment-column")
@click.option("--tags-column")
@click.option("--date-column")
@with_appcontext
def import_csv_command(
    path: Path,
    username: str,
    source: str,
    dry_run: bool,
    url_column,
    title_column,
    comment_column,
    tags_column,
    date_column,
):
    """Preview and import a CSV file of links for one user."""
    user = User.query.filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"unknown user: {username}")

    try:
        parsed = parse_csv_upload(
            path.read_bytes(), max_rows=current_app.config["IMPORT_MAX_ROWS"]
        )
        overrides = {
            "url": url_column,
            "title": title_column,
            "comment": comment_column,
            "tags": tags_column,
            "created_at": date_column,
        }
        mapping = replace(
            suggest_mapping(parsed.columns),
            **{name: column for name, column in overrides.items() if column},
        )
        require_mapped_columns(parsed.rows, mapping)
    except ImportValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Mapping: {mapping.mapped_columns()}")
    try:
        preview = build_import_preview(db.session, user.id, parsed.rows, mapping)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise click.ClickException(f"could not build preview: {exc}") from exc

    summary = preview.summary
    click.echo(
        "Preview: {total} rows, {ready} ready, {duplicates} duplicates, "
        "{errors} errors".format(**summary)
    )
    for error in preview.errors:
        click.echo(f"  row {error.row_number}: {error.message}")

    if dry_run or not preview.ready:
        return

    try:
        result = commit_import(
            db.session,
            user.id,
            preview.ready,
            source=source,
            batch_size=current_app.config["IMPORT_INSERT_BATCH_SIZE"],
        )
    except SQLAlchemyError as exc:
        raise click.ClickException(f"import failed: {exc}") from exc

    outcome = result.summary
    click.echo(
        f"Import {result.import_id} {outcome.status}: imported={outcome.imported} "
        f"duplicates={outcome.duplicates} failed={outcome.failed}"
    )


def register_commands(app) -> None:
    app.cli.add_command(init_db_command)
    app.cli.add_command(import_csv_command)
