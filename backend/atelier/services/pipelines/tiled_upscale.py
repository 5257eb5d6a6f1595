"""Tiled upscale: one ``upscale_tile`` child per grid cell.

The parent sits in ``processing`` and is resolved by the aggregator; every
tile must succeed for the parent to complete.
"""

from typing import Any, Dict, List, Tuple

from atelier.schemas.jobs import JobType
from atelier.services.pipelines.common import with_webhook
from atelier.services.pollers import Poller, register_poller
from atelier.services.workers import Advance, StepContext, worker

MAX_TILES = 1024

ENGINES: Dict[str, Tuple[str, Dict[str, Any]]] = {
    "enhancor_detailed": ("enhancor", {"mode": "detailed"}),
    "enhancor_general": ("enhancor", {"mode": "general"}),
    "comfyui": ("comfyui", {"workflow": "tiled_upscale"}),
}


def plan_tiles(width: int, height: int, tile_size: int) -> List[Dict[str, int]]:
    """Row-major grid covering the image; edge tiles are clipped."""
    tiles = []
    for y in range(0, height, tile_size):
        for x in range(0, width, tile_size):
            tiles.append(
                {
                    "index": len(tiles),
                    "x": x,
                    "y": y,
                    "width": min(tile_size, width - x),
                    "height": min(tile_size, height - y),
                }
            )
    return tiles


def tile_count(width: int, height: int, tile_size: int) -> int:
    return -(-width // tile_size) * -(-height // tile_size)


@worker("tile.submit", JobType.UPSCALE_TILE, expects="pending")
async def submit_tile(ctx: StepContext) -> Advance:
    payload = ctx.payload
    vendor, options = ENGINES[payload.engine]
    body = {
        "img_url": payload.source_url,
        "crop": {
            "x": payload.x,
            "y": payload.y,
            "width": payload.width,
            "height": payload.height,
        },
        "upscale_factor": payload.upscale_factor,
        **options,
    }
    task_id = await ctx.vendor(vendor).submit(with_webhook(body, vendor, ctx.job_id))
    return Advance(
        "polling",
        {"task_id": task_id, "vendor": vendor, "poll_count": 0},
        note=f"tile {payload.index} submitted to {vendor} as {task_id}",
    )


class TilePoller(Poller):
    name = "tile.poll"
    job_type = JobType.UPSCALE_TILE

    def vendor_for(self, ctx: StepContext) -> str:
        return ENGINES[ctx.payload.engine][0]

    def result_name(self, ctx: StepContext) -> str:
        return f"tile-{ctx.payload.index}.png"


register_poller(TilePoller())
