"""
Runtime configuration loaded from the environment (.env supported)
"""
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv


@dataclass
class Settings:
    """Configuration injected into every component at construction"""

    database_url: str = "sqlite:///./invoice_assistant.db"

    # Similarity oracle
    embeddings_provider: str = "sentence-transformers"
    sentence_model: str = "all-MiniLM-L6-v2"
    embeddings_url: str = ""
    embeddings_model: str = "text-embedding-3-small"
    embeddings_api_key: str = ""

    # Supplier resolution
    supplier_top_k: int = 10
    supplier_alternatives: int = 5
    supplier_embedding_max_age_days: int = 7
    supplier_sync_chunk_size: int = 200

    # PO matching
    po_match_threshold: float = 0.7
    po_match_top_k: int = 3
    three_way_match_policy: str = "flag"

    # Posting defaults
    default_company_code: str = "1000"
    default_tax_code: str = "V0"

    # ERP connectivity
    erp_kind: str = "onprem"
    erp_base_url: str = "http://localhost:8080/sap/opu/odata/sap"
    erp_client: str = "100"
    erp_username: str = ""
    erp_password: str = ""
    erp_timeout_seconds: float = 30.0
    erp_page_size: int = 1000

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            embeddings_provider=os.getenv("EMBEDDINGS_PROVIDER", cls.embeddings_provider).lower(),
            sentence_model=os.getenv("SENTENCE_MODEL", cls.sentence_model),
            embeddings_url=os.getenv("EMBEDDINGS_URL", cls.embeddings_url),
            embeddings_model=os.getenv("EMBEDDINGS_MODEL", cls.embeddings_model),
            embeddings_api_key=os.getenv("EMBEDDINGS_API_KEY", cls.embeddings_api_key),
            supplier_top_k=int(os.getenv("SUPPLIER_TOP_K", str(cls.supplier_top_k))),
            supplier_alternatives=int(os.getenv("SUPPLIER_ALTERNATIVES", str(cls.supplier_alternatives))),
            supplier_embedding_max_age_days=int(
                os.getenv("SUPPLIER_EMBEDDING_MAX_AGE_DAYS", str(cls.supplier_embedding_max_age_days))
            ),
            supplier_sync_chunk_size=int(os.getenv("SUPPLIER_SYNC_CHUNK_SIZE", str(cls.supplier_sync_chunk_size))),
            po_match_threshold=float(os.getenv("PO_MATCH_THRESHOLD", str(cls.po_match_threshold))),
            po_match_top_k=int(os.getenv("PO_MATCH_TOP_K", str(cls.po_match_top_k))),
            three_way_match_policy=os.getenv("THREE_WAY_MATCH_POLICY", cls.three_way_match_policy).lower(),
            default_company_code=os.getenv("DEFAULT_COMPANY_CODE", cls.default_company_code),
            default_tax_code=os.getenv("DEFAULT_TAX_CODE", cls.default_tax_code),
            erp_kind=os.getenv("ERP_KIND", cls.erp_kind).lower(),
            erp_base_url=os.getenv("ERP_BASE_URL", cls.erp_base_url),
            erp_client=os.getenv("ERP_CLIENT", cls.erp_client),
            erp_username=os.getenv("ERP_USERNAME", cls.erp_username),
            erp_password=os.getenv("ERP_PASSWORD", cls.erp_password),
            erp_timeout_seconds=float(os.getenv("ERP_TIMEOUT_SECONDS", str(cls.erp_timeout_seconds))),
            erp_page_size=int(os.getenv("ERP_PAGE_SIZE", str(cls.erp_page_size))),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )

    @property
    def blocks_on_three_way_failure(self) -> bool:
        return self.three_way_match_policy == "block"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
