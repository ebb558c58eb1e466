"""Product reviews: append a review and keep num_reviews/rating in step."""

import logging
from datetime import datetime, timezone
from typing import Any

from database import Database, to_object_id
from errors import Conflict, NotFound
from schemas import Review

logger = logging.getLogger(__name__)


def add_review(db: Database, product_id: Any, user_id: Any, rating: int, comment: str = "") -> None:
    """
    Append a review and rewrite num_reviews/rating in the same update.

    The update only matches while the stored reviews array still has the
    length that was read, so an append that lands in between makes this
    one re-read and recompute instead of overwriting the aggregate.
    """
    pid = to_object_id(product_id)
    user = db.find_by_id("user", user_id)
    if db["product"].count_documents({"_id": pid}) == 0:
        raise NotFound("Product not found")
    if user is None:
        raise NotFound("User not found")

    while True:
        product = db["product"].find_one({"_id": pid}, {"reviews": 1})
        if product is None:
            raise NotFound("Product not found")
        reviews = product.get("reviews", [])
        if any(r.get("user") == user["_id"] for r in reviews):
            raise Conflict("Product already reviewed")

        now = datetime.now(timezone.utc)
        review = Review(name=user["username"], rating=rating, comment=comment, user=user["_id"], created_at=now)
        ratings = [r["rating"] for r in reviews] + [rating]
        # a product stored without the field gets it created by $push
        same_length = {"$size": len(reviews)} if "reviews" in product else {"$exists": False}
        res = db["product"].update_one(
            {"_id": pid, "reviews": same_length, "reviews.user": {"$ne": user["_id"]}},
            {
                "$push": {"reviews": review.model_dump()},
                "$set": {
                    "num_reviews": len(ratings),
                    "rating": sum(ratings) / len(ratings),
                    "updated_at": now,
                },
            },
        )
        if res.modified_count == 1:
            break

    logger.info("User %s reviewed product %s (%d stars)", user["_id"], pid, rating)
