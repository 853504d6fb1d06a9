"""
Three-Way-Match Evaluator (invoice / purchase order / goods receipt)
"""
from invoice_assistant.models.state import ThreeWayMatchStatus


class ThreeWayMatchEvaluator:
    """
    Observes each PO line accepted during a matching pass.

    A match is required as soon as one observed line is goods-receipt based;
    it passes when every such line has a received quantity above zero.
    """

    def __init__(self):
        self.gr_based_lines = 0
        self.gr_missing = 0

    def observe(self, po_line) -> None:
        if not po_line.is_goods_receipt_based:
            return
        self.gr_based_lines += 1
        if not (po_line.gr_quantity_posted or 0) > 0:
            self.gr_missing += 1

    @property
    def required(self) -> bool:
        return self.gr_based_lines > 0

    @property
    def passed(self) -> bool:
        if not self.required:
            return True
        return self.gr_missing == 0

    @property
    def status(self) -> ThreeWayMatchStatus:
        if not self.required:
            return ThreeWayMatchStatus.NOT_REQUIRED
        return ThreeWayMatchStatus.PASSED if self.passed else ThreeWayMatchStatus.FAILED
