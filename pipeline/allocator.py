"""
Assignment of image groups to products.

Randomized allocation, used when filenames carry no product mapping:
both lists are shuffled independently, then paired by position. With
more products than groups, groups are reused cyclically so no gallery is
empty. With more groups than products, the surplus stays unassigned.

records_for_group() is the single place where is_primary is decided.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Generic, Sequence, TypeVar

from pipeline.encoder import OUTPUT_MIME_TYPE, PRIMARY_PROFILE
from pipeline.uploader import AssignmentGroup

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProductImageRecord:
    """One product_images row, keyed by (product_id, image_index, profile)."""
    product_id: int
    image_index: int
    profile: str
    url: str
    is_primary: bool
    file_hash: str | None = None
    mime_type: str = OUTPUT_MIME_TYPE

    @property
    def natural_key(self) -> tuple[int, int, str]:
        return (self.product_id, self.image_index, self.profile)


@dataclass(frozen=True)
class Assignment(Generic[T]):
    product: T
    group: AssignmentGroup


@dataclass
class Allocation(Generic[T]):
    """Result of one allocation run."""
    assignments: list[Assignment[T]] = field(default_factory=list)
    unassigned: list[AssignmentGroup] = field(default_factory=list)

    @property
    def reused_groups(self) -> int:
        """Number of groups backing more than one product."""
        counts: dict[str, int] = {}
        for assignment in self.assignments:
            counts[assignment.group.key] = counts.get(assignment.group.key, 0) + 1
        return sum(1 for c in counts.values() if c > 1)


def records_for_group(
    group: AssignmentGroup,
    product_id: int,
    image_index: int = 1,
    primary_profile: str = PRIMARY_PROFILE,
) -> list[ProductImageRecord]:
    """
    Build the rows for one group assigned to one product.

    The variant of the primary profile is primary when the group is the
    product's first image; every other row is not.
    """
    return [
        ProductImageRecord(
            product_id=product_id,
            image_index=image_index,
            profile=variant.profile,
            url=variant.url,
            is_primary=(image_index == 1 and variant.profile == primary_profile),
            file_hash=group.digest,
        )
        for variant in group.variants
    ]


class AssignmentAllocator:
    """
    Randomized allocator of assignment groups to products.

    Attributes:
        rng: Random source. Pass a seeded random.Random for reproducible pairings.
        primary_profile: Profile marked as the listing image.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        primary_profile: str = PRIMARY_PROFILE,
    ):
        self.rng = rng or random.Random()
        self.primary_profile = primary_profile

    def shuffle(self, items: Sequence[T]) -> list[T]:
        """Uniform random permutation (Fisher-Yates) of a copy of items."""
        shuffled = list(items)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self.rng.randint(0, i)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    def allocate(self, products: Sequence[T], groups: Sequence[AssignmentGroup]) -> Allocation[T]:
        """
        Pair products with groups.

        Args:
            products: Products to receive a gallery.
            groups: Complete assignment groups.

        Returns:
            Allocation with one assignment per product (when any group
            exists) and the groups left unassigned.
        """
        if not groups:
            logger.warning("No image groups available for allocation")
            return Allocation()

        shuffled_products = self.shuffle(products)
        shuffled_groups = self.shuffle(groups)

        allocation: Allocation[T] = Allocation()
        for i, product in enumerate(shuffled_products):
            allocation.assignments.append(
                Assignment(product, shuffled_groups[i % len(shuffled_groups)])
            )

        if len(shuffled_groups) > len(shuffled_products):
            allocation.unassigned = shuffled_groups[len(shuffled_products):]

        logger.info(
            f"Allocated {len(shuffled_groups) - len(allocation.unassigned)} of "
            f"{len(shuffled_groups)} groups to {len(shuffled_products)} products "
            f"({allocation.reused_groups} reused, {len(allocation.unassigned)} unassigned)"
        )
        return allocation

    def build_records(self, allocation: Allocation, product_id_of=lambda p: p.id) -> list[ProductImageRecord]:
        """
        Build product_images rows for every assignment.

        Each product receives its group as image 1.
        """
        records = []
        for assignment in allocation.assignments:
            records.extend(records_for_group(
                assignment.group,
                product_id_of(assignment.product),
                image_index=1,
                primary_profile=self.primary_profile,
            ))
        return records
