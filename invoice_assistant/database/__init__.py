# Database package
from .db import Database, get_db
from .models import (
    Base, InvoiceModel, InvoiceLineModel, POLineModel, SupplierModel, ProcessLogModel, new_id
)
from .audit import log_process, mark_error
