# cli.py
import json
import logging
import sys

import click

from documents_api.config.settings import get_settings
from documents_api.dependencies import build_engine
from documents_api.errors import StorageError
from documents_api.main import configure_logging

# Configure logging
logger = logging.getLogger(__name__)


def _engine():
    settings = get_settings()
    configure_logging(settings.log_level)
    return build_engine(settings)


def _print_json(model) -> None:
    print(json.dumps(model.model_dump(mode="json"), indent=2))


@click.group()
def cli():
    """CLI commands for the compliance documents service"""
    pass


@cli.command()
def show_config():
    """Show current configuration (credentials are never printed)"""
    settings = get_settings()

    print("Current Configuration:")
    for name, value in settings.get_environment_dict().items():
        print(f"  {name}: {value}")
    print(f"  Remote storage: {'enabled' if settings.remote_enabled else 'disabled'}")


@cli.command()
def status():
    """Show remote storage health and document counts per backend"""
    _print_json(_engine().maintenance.status())


@cli.command()
@click.option("--batch-size", type=click.IntRange(1, 100), default=10, show_default=True,
              help="Number of local documents to migrate")
@click.option("--dry-run", is_flag=True, help="Only list the documents that would migrate")
@click.option("--keep-local", is_flag=True, help="Keep the local files on disk after migrating")
def migrate(batch_size, dry_run, keep_local):
    """Migrate locally stored documents to S3"""
    try:
        report = _engine().maintenance.migrate(batch_size=batch_size, dry_run=dry_run, delete_local=not keep_local)
    except StorageError as e:
        print(f"❌ Migration not started: {e}")
        sys.exit(1)

    _print_json(report)
    if report.failed:
        print(f"❌ {len(report.failed)} of {report.total} documents failed to migrate")
        sys.exit(1)
    print(f"✅ {len(report.migrated)} of {report.total} documents {'would migrate' if dry_run else 'migrated'}")


@cli.command()
@click.argument("document_id", type=int)
def rollback(document_id):
    """Move one document from S3 back to local storage"""
    try:
        item = _engine().maintenance.rollback(document_id)
    except StorageError as e:
        print(f"❌ Rollback of document {document_id} failed: {e}")
        sys.exit(1)

    _print_json(item)
    if item.error:
        print(f"❌ Document {document_id} copied to {item.new_document_id} but the S3 copy remains")
        sys.exit(1)
    print(f"✅ Document {document_id} is now local document {item.new_document_id}")


@cli.command()
@click.option("--verify-objects", is_flag=True, help="Also stat every stored object and compare sizes")
def reconcile(verify_objects):
    """Finish interrupted deletes and report metadata that disagrees with storage"""
    report = _engine().maintenance.reconcile(verify_objects=verify_objects)
    _print_json(report)
    if not report.healthy:
        print("❌ Reconciliation found problems that need attention")
        sys.exit(1)
    print("✅ Metadata and storage are consistent")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host, port):
    """Run the API with uvicorn"""
    import uvicorn

    from documents_api.main import create_app

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    cli()
