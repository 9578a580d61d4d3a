from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from src.domain import BatchFailure, BatchResult
from src.errors import STORE_ERROR, DispatchError
from src.pipelines.assign_engine import AssignmentCoordinator
from utils.logger import get_logger

logger = get_logger("batch_assign")


class BatchAssignmentHandler:
    """
    N orders → one rider, one coordinator call per order in request order.

    Capacity is not reserved up front; every call re-checks the rider's live
    load, so once the rider fills up the remaining orders fail with RiderFull.
    Partial success is normal and never raises, store errors on one item
    included (each coordinator call is its own transaction).
    """

    def __init__(self, coordinator: AssignmentCoordinator):
        self.coordinator = coordinator

    def assign_batch(self, order_ids: Iterable[str], rider_id: str, actor: str = "operator") -> BatchResult:
        result = BatchResult()
        order_ids = list(order_ids)

        for order_id in order_ids:
            try:
                fact = self.coordinator.assign(order_id, rider_id, override_sla=False, actor=actor)
            except DispatchError as e:
                self._fail(result, order_id, e.code)
                logger.warning(f"batch: order={order_id} rider={rider_id} failed: {e.code} ({e.message})")
                continue
            except SQLAlchemyError as e:
                self._fail(result, order_id, STORE_ERROR)
                logger.error(f"batch: order={order_id} rider={rider_id} store error: {type(e).__name__}: {e}")
                continue
            result.assigned_count += 1
            result.assignments.append(fact)

        logger.info(
            f"batch rider={rider_id}: {result.assigned_count}/{len(order_ids)} assigned, "
            f"{len(result.failed_order_ids)} failed"
        )
        return result

    @staticmethod
    def _fail(result: BatchResult, order_id: str, reason: str) -> None:
        result.failed_order_ids.append(order_id)
        result.failures.append(BatchFailure(order_id=order_id, reason=reason))
