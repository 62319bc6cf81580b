import json
import os

import click
from flask import current_app
from flask.cli import FlaskGroup

from certforge.app import create_app
from certforge.constants import BUCKET_ARCHIVES, BUCKET_GENERATED
from certforge.models import Attribute
from certforge.services.bulk import run_bulk_generation
from certforge.shared.certificates import generate_certificate
from certforge.shared.errors import CertificateError
from certforge.shared.templates import create_template, replace_attributes


cli = FlaskGroup(create_app=create_app)


def _load_json(path: str):
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _register_template(pdf_path: str, attributes_path: str, code: str):
    ext = current_app.extensions["certforge"]
    storage, templates = ext["storage"], ext["templates"]
    with open(pdf_path, "rb") as fh:
        template = create_template(
            templates,
            storage,
            fh.read(),
            code=code,
            name=os.path.basename(pdf_path),
        )
    attributes = [Attribute.from_dict(item) for item in _load_json(attributes_path)]
    return storage, replace_attributes(templates, template.id, attributes)


@cli.command("render-cert")
@click.option("--template", "pdf_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--attributes", "attributes_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--data", "data_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--code", default="CERT", show_default=True, help="Template code used in certificate ids")
@click.option("--email", default=None, help="Recipient e-mail used to derive the certificate id")
@click.option("--output", "output_path", required=True, type=click.Path(dir_okay=False))
def render_cert(pdf_path, attributes_path, data_path, code, email, output_path):
    """Render one certificate from a template PDF and a JSON record."""
    try:
        storage, template = _register_template(pdf_path, attributes_path, code)
        generated = generate_certificate(
            template, _load_json(data_path), storage=storage, recipient_email=email
        )
    except (CertificateError, ValueError) as exc:
        raise click.ClickException(str(exc))
    with open(output_path, "wb") as fh:
        fh.write(storage.get(BUCKET_GENERATED, generated.filename))
    click.echo(f"{generated.certificate_id} -> {output_path}")


@cli.command("bulk")
@click.option("--template", "pdf_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--attributes", "attributes_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--csv", "csv_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--mapping", "mapping_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--code", default="BULK", show_default=True)
@click.option("--batch-size", type=int, default=None, help="Rows rendered concurrently per batch")
@click.option("--output", "output_path", required=True, type=click.Path(dir_okay=False))
def bulk(pdf_path, attributes_path, csv_path, mapping_path, code, batch_size, output_path):
    """Render one certificate per CSV row and write them as a ZIP."""
    try:
        storage, template = _register_template(pdf_path, attributes_path, code)
        with open(csv_path, "rb") as fh:
            raw = fh.read()
        result = run_bulk_generation(
            template,
            raw,
            _load_json(mapping_path),
            storage=storage,
            batch_size=batch_size or int(current_app.config["CERT_BATCH_SIZE"]),
        )
    except (CertificateError, ValueError) as exc:
        raise click.ClickException(str(exc))

    for failure in result.failures:
        click.echo(f"row {failure.row}: {failure.message}", err=True)
    if result.archive_ref:
        bucket, _, name = result.archive_ref.partition("/")
        with open(output_path, "wb") as fh:
            fh.write(storage.get(bucket or BUCKET_ARCHIVES, name))
    click.echo(
        f"requested={result.total_requested} ok={result.success_count} "
        f"failed={result.failure_count} archive={output_path if result.archive_ref else '-'}"
    )


if __name__ == "__main__":
    cli()
