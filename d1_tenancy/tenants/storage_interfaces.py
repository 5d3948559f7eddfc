from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from .models import TenantRecord, TenantStatus, TenantType, TenantMigrationStatus


class AbstractTenantRegistry(ABC):
    """
    Abstract base class defining the tenant registry contract.

    The registry is the single source of truth reconciling local bookkeeping
    with the existence of remote tenant databases. Implementations must
    guarantee at most one non-deleted record per (tenant_id, tenant_type).
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend and prepare it for operations."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Clean up resources and properly close the storage backend."""
        pass

    @abstractmethod
    async def get(self, record_id: str) -> Optional[TenantRecord]:
        """Retrieve a registry record by its internal primary key."""
        pass

    @abstractmethod
    async def find(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantRecord]:
        """
        Retrieve the current record for a tenant identity.

        Returns the non-deleted record if one exists, otherwise the most
        recently created deleted record, otherwise None.
        """
        pass

    @abstractmethod
    async def find_active(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantRecord]:
        """Retrieve the record for a tenant identity only if its status is active."""
        pass

    @abstractmethod
    async def insert(
        self,
        tenant_id: str,
        tenant_type: TenantType,
        database_name: str,
        additional_fields: Optional[Dict[str, Any]] = None
    ) -> TenantRecord:
        """
        Insert a new record in 'creating' status.

        ``additional_fields`` carries values for the extra registry columns.

        Raises:
            TenantAlreadyExistsError: a non-deleted record already exists for the identity
            ValueError: an additional field is unknown or a required one is missing
        """
        pass

    @abstractmethod
    async def update_status(
        self,
        record_id: str,
        status: TenantStatus,
        extra_fields: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Move a record to a new status, optionally updating other columns.

        Returns:
            True on success. False (never an exception) when the record is
            missing, the transition is not allowed, or persistence fails.
        """
        pass

    @abstractmethod
    async def append_migration(
        self,
        record_id: str,
        version: str,
        name: str,
        checksum: Optional[str] = None
    ) -> None:
        """Append an applied migration to the history and update last_migration_version."""
        pass

    @abstractmethod
    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        tenant_type: Optional[TenantType] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantRecord]:
        """Retrieve a paginated list of registry records, newest first."""
        pass

    @abstractmethod
    async def get_migration_status(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantMigrationStatus]:
        """Return the current schema version and migration history for a tenant."""
        pass
