"""Reusable aggregation pipelines for :meth:`Model.aggregate`."""

from __future__ import annotations

from typing import Any


def sort_by_popular(
    likes_collection: str,
    *,
    only_active: bool = False,
    limit: int = 0,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Order documents by their likes, most liked first.

    Likes live in *likes_collection* and point at their target through a
    ``parent`` field holding the target's id as a string. The joined likes are
    left on each document under ``likes``. ``limit`` and ``offset`` of 0 are
    ignored.
    """
    pipeline: list[dict[str, Any]] = [
        {"$addFields": {"id": {"$toString": "$_id"}}},
        {
            "$lookup": {
                "from": likes_collection,
                "localField": "id",
                "foreignField": "parent",
                "as": "likes",
            }
        },
        {"$sort": {"likes": -1}},
    ]
    if only_active:
        pipeline.append({"$match": {"active": True}})
    if offset > 0:
        pipeline.append({"$skip": offset})
    if limit > 0:
        pipeline.append({"$limit": limit})
    return pipeline
