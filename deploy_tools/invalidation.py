import logging
import time
from typing import Sequence

logger = logging.getLogger(__name__)


def invalidate_distribution(cloudfront, distribution_id: str, paths: Sequence[str] = ("/*",)) -> str:
    """Start a CloudFront invalidation and return its id."""
    response = cloudfront.create_invalidation(
        DistributionId=distribution_id,
        InvalidationBatch={
            "Paths": {"Quantity": len(paths), "Items": list(paths)},
            "CallerReference": f"deploy-tools-{time.time_ns()}",
        },
    )
    invalidation_id = response["Invalidation"]["Id"]
    logger.info("Invalidation %s started for %s", invalidation_id, distribution_id)
    return invalidation_id
