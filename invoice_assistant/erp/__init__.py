# ERP connectivity package
from .adapters import ErpAdapter, OnPremAdapter, CloudAdapter, get_adapter
from .client import ErpClient
