"""
CLI interface for the document catalog.

Usage:
    odinsource add-document paper.pdf -t climate -t models --author Doe
    odinsource import-batch papers.toml
    odinsource query --tags climate,models --mode any
    odinsource open 3
"""

import atexit
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from . import __version__
from .api import Catalog, metadata_from_options
from .errors import OdinSourceError, log_exception
from .logging_config import enable_debug_mode
from .mutator import DocumentPatch, TagPatch
from .types import DocumentRecord, QueryMode, split_tag_list


# Set ODINSOURCE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("ODINSOURCE_VERBOSE") == "1":
    enable_debug_mode()


def _version_callback(value: bool):
    if value:
        print(f"odinsource {__version__}")
        raise typer.Exit()


# Global state for CLI options, set by main_callback on every invocation
_json_output = False
_store_override: Optional[Path] = None


def _get_json_output() -> bool:
    return _json_output


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="odinsource",
    help="Catalog reference documents by tag.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="ODINSOURCE_STORE_PATH",
        help="Path to the store directory (default: ~/.odinsource/)",
    )] = None,
):
    """Catalog reference documents by tag."""
    global _json_output, _store_override
    _json_output = output_json
    _store_override = store
    if verbose:
        enable_debug_mode()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_catalog() -> Catalog:
    """Open the catalog, handling errors gracefully."""
    try:
        cat = Catalog(_get_store_override())
    except (OdinSourceError, OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(cat.close)
    return cat


@contextmanager
def _reported(context: str) -> Iterator[None]:
    """Render core errors as one clean line; the traceback goes to the error log."""
    try:
        yield
    except OdinSourceError as e:
        log_exception(e, context, _get_store_override())
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_meta(meta: Optional[list[str]]) -> dict[str, str]:
    """Parse key=value metadata list to dict."""
    if not meta:
        return {}
    parsed = {}
    for item in meta:
        if "=" not in item:
            typer.echo(f"Error: Invalid metadata '{item}'. Use key=value", err=True)
            raise typer.Exit(1)
        k, v = item.split("=", 1)
        parsed[k.strip()] = v
    return parsed


def _format_document_line(doc: DocumentRecord) -> str:
    line = f"{doc.id:>4}  {doc.title}"
    if doc.tags:
        line += f"  [{', '.join(doc.tags)}]"
    return line


def _echo_documents(docs: list[DocumentRecord], empty: str = "No documents.") -> None:
    if _get_json_output():
        typer.echo(json.dumps([d.to_dict() for d in docs], indent=2))
    elif not docs:
        typer.echo(empty)
    else:
        for doc in docs:
            typer.echo(_format_document_line(doc))


def _echo_document(doc: DocumentRecord) -> None:
    if _get_json_output():
        typer.echo(json.dumps(doc.to_dict(), indent=2))
    else:
        typer.echo(str(doc))


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

AuthorOption = Annotated[Optional[str], typer.Option("--author", help="Author(s)")]
YearOption = Annotated[Optional[int], typer.Option("--year", help="Publication year")]
PublicationOption = Annotated[Optional[str], typer.Option("--publication", help="Journal or publisher")]
VolumeOption = Annotated[Optional[int], typer.Option("--volume", help="Volume number")]
DoiOption = Annotated[Optional[str], typer.Option("--doi", help="DOI")]
MetaOption = Annotated[Optional[list[str]], typer.Option(
    "--meta", "-m",
    help="Extra metadata as key=value (repeatable)",
)]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("add-document")
def add_document(
    path: Annotated[Path, typer.Argument(help="Document file to add")],
    title: Annotated[Optional[str], typer.Option(
        "--title", help="Title (default: file name)"
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Tag name, or comma-separated names (repeatable)",
    )] = None,
    author: AuthorOption = None,
    year: YearOption = None,
    publication: PublicationOption = None,
    volume: VolumeOption = None,
    doi: DoiOption = None,
    meta: MetaOption = None,
):
    """Add one document."""
    metadata = _parse_meta(meta)
    metadata.update(metadata_from_options(
        author=author, year=year, publication=publication, volume=volume, doi=doi,
    ))
    cat = _get_catalog()
    with _reported("add-document"):
        doc_id = cat.add_document(
            path, title=title, tags=split_tag_list(tag), metadata=metadata
        )
        _echo_document(cat.get(doc_id))


@app.command("import-batch")
def import_batch(
    file: Annotated[Path, typer.Argument(help="TOML file with [[documents]] entries")],
):
    """Add or update many documents from a TOML file.

    Each entry succeeds or fails on its own. Exits with status 1 if any
    entry failed.
    """
    cat = _get_catalog()
    with _reported("import-batch"):
        outcomes = cat.import_batch(file)

    if _get_json_output():
        typer.echo(json.dumps([o.to_dict() for o in outcomes], indent=2))
    else:
        for o in outcomes:
            if o.ok:
                verb = "inserted" if o.action == "insert" else "updated"
                typer.echo(f"[{o.index}] {verb} document {o.document_id}")
            else:
                typer.echo(f"[{o.index}] {type(o.error).__name__}: {o.error}", err=True)
    failed = sum(1 for o in outcomes if not o.ok)
    typer.echo(f"{len(outcomes) - failed} imported, {failed} failed", err=True)
    if failed:
        raise typer.Exit(1)


@app.command("edit-document")
def edit_document(
    ref: Annotated[str, typer.Argument(help="Document id or exact title")],
    title: Annotated[Optional[str], typer.Option("--title", help="New title")] = None,
    tags: Annotated[Optional[str], typer.Option(
        "--tags", help="Replace all tags (comma-separated; empty string clears)"
    )] = None,
    add_tag: Annotated[Optional[list[str]], typer.Option(
        "--add-tag", "-t", help="Tag to add (repeatable)"
    )] = None,
    remove_tag: Annotated[Optional[list[str]], typer.Option(
        "--remove-tag", "-r", help="Tag to remove (repeatable)"
    )] = None,
    author: AuthorOption = None,
    year: YearOption = None,
    publication: PublicationOption = None,
    volume: VolumeOption = None,
    doi: DoiOption = None,
    meta: MetaOption = None,
):
    """Change fields of a document. Only the given fields change."""
    metadata = _parse_meta(meta)
    metadata.update(metadata_from_options(
        author=author, year=year, publication=publication, volume=volume, doi=doi,
    ))
    patch = DocumentPatch(
        title=title,
        metadata=metadata or None,
        tags=split_tag_list(tags) if tags is not None else None,
        add_tags=split_tag_list(add_tag) or None,
        remove_tags=split_tag_list(remove_tag) or None,
    )
    cat = _get_catalog()
    with _reported("edit-document"):
        doc = cat.resolve_document(ref)
        _echo_document(cat.edit_document(doc.id, patch))


@app.command("edit-tag")
def edit_tag(
    id: Annotated[int, typer.Argument(help="Tag id")],
    name: Annotated[Optional[str], typer.Option("--name", help="New tag name")] = None,
):
    """Rename a tag. Documents keep the tag."""
    cat = _get_catalog()
    with _reported("edit-tag"):
        tag = cat.edit_tag(id, TagPatch(name=name))
    if _get_json_output():
        typer.echo(json.dumps(tag.to_dict(), indent=2))
    else:
        typer.echo(f"{tag.id:>4}  {tag.name}")


@app.command("reimport")
def reimport(
    id: Annotated[int, typer.Argument(help="Document id")],
    path: Annotated[Path, typer.Argument(help="File with the new content")],
):
    """Replace a document's file content."""
    cat = _get_catalog()
    with _reported("reimport"):
        _echo_document(cat.reimport(id, path))


@app.command("query")
def query(
    tags: Annotated[list[str], typer.Option(
        "--tags", "-t",
        help="Tag names, comma-separated or repeated",
    )],
    mode: Annotated[QueryMode, typer.Option(
        "--mode",
        case_sensitive=False,
        help="all: documents with every tag; any: documents with at least one",
    )] = QueryMode.ALL,
):
    """Find documents by tag."""
    names = split_tag_list(tags)
    cat = _get_catalog()
    with _reported("query"):
        unknown = cat.unknown_tags(names)
        if unknown:
            typer.echo(f"Unknown tag(s) ignored: {', '.join(unknown)}", err=True)
        docs = cat.query_documents(names, mode)
    _echo_documents(docs, empty="No matching documents.")


@app.command("search")
def search(
    text: Annotated[str, typer.Argument(help="Text to look for in titles")],
):
    """Find documents by title."""
    cat = _get_catalog()
    with _reported("search"):
        docs = cat.search_titles(text)
    _echo_documents(docs, empty="No matching documents.")


@app.command("open")
def open_document(
    ref: Annotated[str, typer.Argument(help="Document id or exact title")],
):
    """Open a document in the external viewer."""
    cat = _get_catalog()
    with _reported("open"):
        started = cat.open_document(ref)
    if not started:
        typer.echo(f"Could not open document {ref} with '{cat.config.viewer_command}'", err=True)


@app.command("get")
def get(
    id: Annotated[int, typer.Argument(help="Document id")],
):
    """Show one document."""
    cat = _get_catalog()
    with _reported("get"):
        _echo_document(cat.documents.require(id))


@app.command("list")
def list_documents():
    """List all documents."""
    cat = _get_catalog()
    with _reported("list"):
        docs = cat.list_documents()
    _echo_documents(docs)


@app.command("delete-document")
def delete_document(
    ref: Annotated[str, typer.Argument(help="Document id or exact title")],
):
    """Delete a document. Its tags are kept."""
    cat = _get_catalog()
    with _reported("delete-document"):
        doc = cat.remove_document(cat.resolve_document(ref).id)
    typer.echo(f"Deleted document {doc.id}: {doc.title}")


@app.command("tags")
def list_tags():
    """List tags with the number of documents using each."""
    cat = _get_catalog()
    with _reported("tags"):
        tags = cat.list_tags()
    if _get_json_output():
        typer.echo(json.dumps([{**t.to_dict(), "documents": n} for t, n in tags], indent=2))
    elif not tags:
        typer.echo("No tags.")
    else:
        for tag, count in tags:
            typer.echo(f"{tag.id:>4}  {tag.name}  ({count})")


@app.command("add-tag")
def add_tag(
    names: Annotated[list[str], typer.Argument(
        help="Tag names, comma-separated or as separate arguments"
    )],
):
    """Create tags (existing names are left as they are)."""
    cat = _get_catalog()
    with _reported("add-tag"):
        tags = cat.add_tags(split_tag_list(names))
    for tag in tags:
        typer.echo(f"{tag.id:>4}  {tag.name}")


@app.command("delete-tag")
def delete_tag(
    id: Annotated[Optional[int], typer.Argument(help="Tag id")] = None,
    name: Annotated[Optional[str], typer.Option(
        "--name", "-n", help="Select the tag by name instead of id"
    )] = None,
    cascade: Annotated[bool, typer.Option(
        "--cascade",
        help="Also detach the tag from every document using it",
    )] = False,
):
    """Delete a tag. Refused while documents use it, unless --cascade."""
    if (id is None) == (name is None):
        typer.echo("Error: Give either a tag id or --name", err=True)
        raise typer.Exit(1)
    cat = _get_catalog()
    with _reported("delete-tag"):
        if name is not None:
            id = cat.tag_by_name(name).id
        detached = cat.delete_tag(id, cascade=cascade)
    msg = f"Deleted tag {id}"
    if detached:
        msg += f", detached from {len(detached)} document(s)"
    typer.echo(msg)


@app.command("prune-tags")
def prune_tags():
    """Delete tags no document uses."""
    cat = _get_catalog()
    with _reported("prune-tags"):
        pruned = cat.prune_tags()
    if not pruned:
        typer.echo("No unused tags.")
    for tag in pruned:
        typer.echo(f"Deleted tag {tag.id}: {tag.name}")


def main():
    app()


if __name__ == "__main__":
    main()
