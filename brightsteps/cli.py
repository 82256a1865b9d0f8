import json
import logging
import sys
from pathlib import Path

import click

from brightsteps.config import get_settings
from brightsteps.errors import BrightStepsError
from brightsteps.models.pack import ModuleType

MODULE_CHOICES = click.Choice([m.value for m in ModuleType])


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """brightsteps - learning pack content store"""
    from brightsteps.core.service import build_content_service

    ctx.ensure_object(dict)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.obj["settings"] = settings
    service = build_content_service(settings)
    ctx.obj["service"] = service
    ctx.call_on_close(service.shutdown)


@cli.command(name="init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    click.echo("Database initialized successfully.")


@cli.command(name="create-pack")
@click.option("--title", required=True, help="Pack title.")
@click.option("--module", "module_type", type=MODULE_CHOICES, required=True, help="Module type.")
@click.option("--pack-id", default=None, help="Pack ID (generated if omitted).")
@click.option("--language", default=None, help="Content language (default: en).")
@click.option("--topic", "topics", multiple=True, help="Topic (repeatable).")
@click.pass_context
def create_pack(
    ctx: click.Context,
    title: str,
    module_type: str,
    pack_id: str | None,
    language: str | None,
    topics: tuple[str, ...],
) -> None:
    """Create an empty pack."""
    service = ctx.obj["service"]
    try:
        record = service.packs.create(
            title, module_type, pack_id=pack_id, language=language, topics=list(topics),
        )
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    click.echo(f"[OK] {record.pack_id} ({record.module_type.value})")


@cli.command(name="save-pack")
@click.argument("pack_id")
@click.argument("document", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def save_pack(ctx: click.Context, pack_id: str, document: Path) -> None:
    """Store a pack document from a JSON file and report validation issues."""
    service = ctx.obj["service"]
    try:
        payload = json.loads(document.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        click.echo(f"[FAIL] {document}: invalid JSON ({e})", err=True)
        sys.exit(1)

    try:
        result = service.packs.save(pack_id, payload)
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)

    click.echo(f"[OK] {pack_id} saved ({len(result.record.payload.get('items', []))} items)")
    for message in result.validation.messages():
        click.echo(f"  ! {message}")


@cli.command(name="list-packs")
@click.option("--module", "module_type", type=MODULE_CHOICES, default=None, help="Filter by module.")
@click.pass_context
def list_packs(ctx: click.Context, module_type: str | None) -> None:
    """List packs, most recently updated first."""
    packs = ctx.obj["service"].packs.list_packs(module_type)
    if not packs:
        click.echo("  (none)")
        return
    for pack in packs:
        items = len(pack.payload.get("items", []))
        click.echo(
            f"  [{pack.module_type.value:<14}] {pack.pack_id}  "
            f"{pack.title[:50]}  items={items}"
        )


@cli.command(name="add-image")
@click.argument("pack_id")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mime-type", required=True, help="MIME type of the image, e.g. image/png.")
@click.option("--alt", "alt_text", default=None, help="Alt text.")
@click.option("--item-id", default=None, help="Use the image as this item's picture.")
@click.pass_context
def add_image(
    ctx: click.Context,
    pack_id: str,
    image: Path,
    mime_type: str,
    alt_text: str | None,
    item_id: str | None,
) -> None:
    """Upload an image asset for a pack."""
    service = ctx.obj["service"]
    try:
        record = service.add_image_asset(
            pack_id, image.read_bytes(), mime_type, alt_text=alt_text, item_id=item_id,
        )
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    click.echo(f"[OK] {record.asset_id} -> {service.asset_url(record.asset_id)}")


@cli.command()
@click.option("--module", "module_type", type=MODULE_CHOICES, required=True, help="Module type.")
@click.option("--pack-id", required=True, help="Pack ID.")
@click.option(
    "--item-id", "item_ids", multiple=True,
    help="Item ID(s) to generate (repeatable; default: every item in the pack).",
)
@click.option("--provider", default=None, help="Provider (default from settings).")
@click.option("--model", default=None, help="Model (default from settings).")
@click.option("--prompt-version", default=None, help="Prompt version (default from settings).")
@click.option("--force", is_flag=True, default=False, help="Regenerate even if cached.")
@click.option("--timeout", type=float, default=None, help="Seconds to wait per item.")
@click.pass_context
def generate(
    ctx: click.Context,
    module_type: str,
    pack_id: str,
    item_ids: tuple[str, ...],
    provider: str | None,
    model: str | None,
    prompt_version: str | None,
    force: bool,
    timeout: float | None,
) -> None:
    """Get or generate content for pack items."""
    service = ctx.obj["service"]
    if not item_ids:
        try:
            pack = service.packs.require(pack_id)
        except BrightStepsError as e:
            click.echo(f"[FAIL] {e.message}", err=True)
            sys.exit(1)
        item_ids = tuple(
            str(item["id"]) for item in pack.payload.get("items", [])
            if isinstance(item, dict) and item.get("id")
        )
        if not item_ids:
            click.echo(f"No items in pack {pack_id}")
            return

    has_failure = False
    for item_id in item_ids:
        try:
            result = service.get_or_generate(
                module_type, pack_id, item_id,
                provider=provider, model=model, prompt_version=prompt_version,
                force=force, timeout=timeout,
            )
        except BrightStepsError as e:
            click.echo(f"[FAIL] {item_id}: {e.message}", err=True)
            has_failure = True
            continue

        click.echo(f"[OK] {item_id} -> {result.cache_key[:12]}")
        click.echo(json.dumps(result.payload, indent=2, ensure_ascii=False))
        if result.audio_url:
            click.echo(f"  audio: {result.audio_url}")
        for message in result.validation.messages():
            click.echo(f"  ! {message}")

    if has_failure:
        sys.exit(1)


@cli.command()
@click.option("--pack-id", required=True, help="Pack ID.")
@click.option("--item-id", required=True, help="Item ID.")
@click.option("--limit", type=int, default=20, help="Max rows to show.")
@click.pass_context
def history(ctx: click.Context, pack_id: str, item_id: str, limit: int) -> None:
    """Show generation attempts for an item, newest first."""
    records = ctx.obj["service"].history_for(pack_id, item_id, limit=limit)
    if not records:
        click.echo("No generation history recorded yet.")
        return
    for rec in records:
        err = f"  !! {rec.error_message[:60]}" if rec.error_message else ""
        click.echo(
            f"  #{rec.id:<5} [{rec.status.value:<7}] {rec.created_at:%Y-%m-%d %H:%M:%S}  "
            f"{rec.provider}/{rec.model}/{rec.prompt_version}{err}"
        )


@cli.command()
@click.option("--pack-id", required=True, help="Pack ID.")
@click.option("--item-id", default=None, help="Limit to one item.")
@click.pass_context
def entries(ctx: click.Context, pack_id: str, item_id: str | None) -> None:
    """List cached content entries for a pack."""
    rows = ctx.obj["service"].entries_for(pack_id, item_id)
    if not rows:
        click.echo("  (none)")
        return
    for entry in rows:
        flag = "  [flagged]" if entry.flagged else ""
        audio = f"  audio={entry.audio_asset_id}" if entry.audio_asset_id else ""
        click.echo(
            f"  {entry.cache_key}  {entry.item_id}  "
            f"{entry.provider}/{entry.model}/{entry.prompt_version}{audio}{flag}"
        )


@cli.command()
@click.argument("cache_key")
@click.option("--unflag", is_flag=True, default=False, help="Clear the flag instead.")
@click.pass_context
def flag(ctx: click.Context, cache_key: str, unflag: bool) -> None:
    """Flag a cached entry so it is regenerated on next request."""
    try:
        entry = ctx.obj["service"].flag(cache_key, flagged=not unflag)
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    click.echo(f"[OK] {entry.cache_key[:12]} flagged={entry.flagged}")


@cli.command()
@click.argument("cache_key")
@click.pass_context
def invalidate(ctx: click.Context, cache_key: str) -> None:
    """Remove a cached entry (history is kept)."""
    if ctx.obj["service"].invalidate(cache_key):
        click.echo(f"[OK] {cache_key[:12]} invalidated")
    else:
        click.echo(f"No cache entry for {cache_key[:12]}")


@cli.command(name="remove-item")
@click.argument("pack_id")
@click.argument("item_id")
@click.pass_context
def remove_item(ctx: click.Context, pack_id: str, item_id: str) -> None:
    """Remove an item with its cached content and unused assets."""
    try:
        record = ctx.obj["service"].remove_item(pack_id, item_id)
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    click.echo(f"[OK] {item_id} removed ({len(record.payload.get('items', []))} items left)")


@cli.command(name="read-asset")
@click.argument("asset_id")
@click.option(
    "--output", "output", type=click.Path(dir_okay=False, path_type=Path), required=True,
    help="File to write the asset bytes to.",
)
@click.pass_context
def read_asset(ctx: click.Context, asset_id: str, output: Path) -> None:
    """Copy an asset's bytes to a file."""
    try:
        blob = ctx.obj["service"].read_asset(asset_id)
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    output.write_bytes(blob.data)
    click.echo(f"[OK] {asset_id} ({blob.mime_type}, {len(blob.data)} bytes) -> {output}")


@cli.command(name="delete-pack")
@click.argument("pack_id")
@click.confirmation_option(prompt="Delete the pack with all its assets, cache and history?")
@click.pass_context
def delete_pack(ctx: click.Context, pack_id: str) -> None:
    """Delete a pack and everything it owns."""
    try:
        existed = ctx.obj["service"].delete_pack(pack_id)
    except BrightStepsError as e:
        click.echo(f"[FAIL] {e.message}", err=True)
        sys.exit(1)
    if existed:
        click.echo(f"[OK] {pack_id} deleted")
    else:
        click.echo(f"Pack not found: {pack_id} (leftovers cleaned up)")
