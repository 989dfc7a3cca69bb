import argparse
import asyncio
import pathlib

from makeup_preview.data.constants import ZoneCategory
from makeup_preview.dto.edit import EditRequest
from makeup_preview.services import get_service_status, run_pipeline
from makeup_preview.services.utils import http_client
from makeup_preview.services.utils.image_io import sniff_mime
from makeup_preview.utils.logging import setup_logger

# Local preview run: python script.py photo.jpg --eyes "soft brown shadow" --lips "nude gloss"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a makeup preview for a local photo.")
    parser.add_argument("photo", type=pathlib.Path)
    parser.add_argument("--title", default="Natural everyday look")
    parser.add_argument("--description", default="fresh, natural makeup")
    parser.add_argument("--intensity", type=float, default=0.6)
    parser.add_argument("--output", type=pathlib.Path, default=pathlib.Path("preview_output"))
    for zone in ZoneCategory:
        parser.add_argument(f"--{zone.value}", metavar="TEXT", help=f"{zone.value} makeup description")
    return parser.parse_args()


async def main() -> None:
    log = setup_logger()
    args = parse_args()

    requests = [
        EditRequest(zone=zone, description=getattr(args, zone.value), intensity=args.intensity)
        for zone in ZoneCategory
        if getattr(args, zone.value)
    ]
    if not requests:
        log.error("Nothing to preview, pass at least one zone description (e.g. --lips)")
        return

    photo = args.photo.read_bytes()
    log.info("Service status", **get_service_status())

    async with http_client.lifespan():
        outcome = await run_pipeline(
            photo,
            sniff_mime(photo) or "image/jpeg",
            requests,
            args.title,
            args.description,
            session_id=args.photo.stem,
        )

    log.info("Preview finished", **outcome.summary())
    if outcome.image:
        args.output.mkdir(parents=True, exist_ok=True)
        ext = (outcome.content_type or "image/png").split("/")[-1]
        target = args.output / f"{args.photo.stem}_preview.{ext}"
        target.write_bytes(outcome.image)
        log.info("Preview saved", path=str(target))


if __name__ == "__main__":
    asyncio.run(main())
