# Invoice operations, one module per pipeline step
from .intake import create_invoice_from_extraction
from .supplier import SupplierResolver
from .supplier_sync import SupplierMasterSync
from .po_match import POLineMatcher
from .validate import validate_invoice_step
from .approve import initialize_workflow, record_approval
from .posting import ErpPoster, record_posting_result
from .status import get_invoice_status, get_process_log
