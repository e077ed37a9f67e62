"""Data access guard enforcing tenant isolation inside SQLAlchemy sessions.

Every session created by the application's session factory is a
``TenantSession``. The guard hooks that class so each statement, flush,
and identity-map read is checked against the tenant context of the running
unit of work:

- writes stamp ``tenant_id`` from the context and reject foreign tenants
- reads get a ``tenant_id`` criterion injected for every tenant-owned entity,
  or every tenant-owned table in the FROM clause of a Core statement
- caller-supplied ``tenant_id`` filters must name the current tenant
- tenant-scoped access without a context raises ``NoTenantContext``

Row filtering is delegated to an isolation strategy (shared tables with a
tenant column, or a schema per tenant). PostgreSQL row-level policies can run
alongside either; the policy variable is set from the same context at the
start of each transaction.

Core statements that reach a tenant-owned table through a subquery, CTE or
compound select cannot be scoped and are refused. Raw ``text()`` statements
are not inspected; row-level policies are the only protection for them.
"""

import logging
import re
from typing import Any, List, Optional, Set, Tuple

from sqlalchemy import Table, event
from sqlalchemy.orm import ORMExecuteState, Session, attributes, with_loader_criteria
from sqlalchemy.sql import operators, visitors
from sqlalchemy.sql.elements import BinaryExpression, BindParameter
from sqlalchemy.sql.selectable import Alias, Join, Select

from campus.core.database import Base, set_tenant_context, set_tenant_search_path
from campus.core.exceptions import CrossTenantRead, CrossTenantWrite
from campus.core.settings import Settings
from campus.core.tenant_context import current, require_current
from campus.models.base import TenantOwnedMixin

logger = logging.getLogger(__name__)

TENANT_COLUMN = "tenant_id"
SESSION_TENANT_KEY = "tenant_id"

# Compiled parameter names that carry a tenant_id value (single and multi-row VALUES)
_TENANT_PARAM = re.compile(r"^tenant_id(_m\d+)?$")
_SCHEMA_SAFE = re.compile(r"[^a-z0-9_]")


class IsolationStrategy:
    """Base class for tenant row-filtering strategies."""

    name = "base"

    def on_begin(self, connection, tenant_id: str) -> None:
        """Prepare a freshly begun transaction for ``tenant_id``."""

    def apply_read_criteria(self, state: ORMExecuteState, tenant_id: str) -> None:
        """Restrict an ORM statement to rows owned by ``tenant_id``."""

    def apply_core_criteria(self, state: ORMExecuteState, scoped: List[Any], tenant_id: str) -> None:
        """Restrict a Core statement's tenant-owned ``scoped`` tables to ``tenant_id``."""


class SharedTableIsolation(IsolationStrategy):
    """
    Row-level isolation in shared tables.

    Injects ``tenant_id = :current`` for every tenant-owned entity the
    statement touches, including aliases and relationship loads.
    """

    name = "shared_table"

    def apply_read_criteria(self, state: ORMExecuteState, tenant_id: str) -> None:
        state.statement = state.statement.options(
            with_loader_criteria(
                TenantOwnedMixin,
                lambda cls: cls.tenant_id == tenant_id,
                include_aliases=True,
            )
        )

    def apply_core_criteria(self, state: ORMExecuteState, scoped: List[Any], tenant_id: str) -> None:
        state.statement = state.statement.where(
            *[selectable.c.tenant_id == tenant_id for selectable in scoped]
        )


class SchemaPerTenantIsolation(IsolationStrategy):
    """
    Schema-per-tenant isolation.

    Each transaction's ``search_path`` points at the tenant's schema, so
    unqualified table names resolve to that tenant's tables. Rows are not
    filtered further; writes are still stamped and validated by the guard.
    """

    name = "schema"

    def __init__(self, schema_prefix: str = "tenant_"):
        self.schema_prefix = schema_prefix

    def schema_name(self, tenant_id: str) -> str:
        return self.schema_prefix + _SCHEMA_SAFE.sub("_", tenant_id.lower())

    def on_begin(self, connection, tenant_id: str) -> None:
        if connection.dialect.name != "postgresql":
            logger.warning("Schema isolation requires PostgreSQL; search_path not set")
            return
        set_tenant_search_path(connection, self.schema_name(tenant_id))


def build_strategy(settings: Settings) -> IsolationStrategy:
    if settings.isolation_strategy == "schema":
        return SchemaPerTenantIsolation(settings.tenant_schema_prefix)
    return SharedTableIsolation()


def tenant_owned_tables() -> Set[str]:
    """Names of all mapped tables partitioned by tenant."""
    return {
        mapper.local_table.name
        for mapper in Base.registry.mappers
        if issubclass(mapper.class_, TenantOwnedMixin)
    }


def scoped_froms(from_clause, owned_tables: Set[str]) -> List[Any]:
    """Tenant-owned tables and table aliases in a FROM clause, through joins."""
    if isinstance(from_clause, Join):
        return scoped_froms(from_clause.left, owned_tables) + scoped_froms(from_clause.right, owned_tables)
    table = from_clause.element if isinstance(from_clause, Alias) else from_clause
    if isinstance(table, Table) and table.name in owned_tables:
        return [from_clause]
    return []


def _base_table_name(selectable) -> str:
    return selectable.element.name if isinstance(selectable, Alias) else selectable.name


def _tenant_column_table(element) -> Optional[str]:
    if getattr(element, "key", None) != TENANT_COLUMN:
        return None
    table = getattr(element, "table", None)
    return table.name if isinstance(table, Table) else None


def _bound_values(bind: BindParameter) -> List[Any]:
    value = bind.effective_value
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def inspect_statement(statement, owned_tables: Set[str]) -> Tuple[Set[str], List[str]]:
    """
    Find tenant-owned tables a statement touches and any tenant ids it filters on.

    Returns:
        Tuple of (tenant-owned table names, explicit tenant_id filter values)
    """
    tables: Set[str] = set()
    explicit: List[str] = []

    for element in visitors.iterate(statement):
        if isinstance(element, Table) and element.name in owned_tables:
            tables.add(element.name)
            continue

        table = getattr(element, "table", None)
        if isinstance(table, Table) and table.name in owned_tables:
            tables.add(table.name)

        if isinstance(element, BinaryExpression) and element.operator in (
            operators.eq,
            operators.in_op,
        ):
            for column_side, value_side in (
                (element.left, element.right),
                (element.right, element.left),
            ):
                table_name = _tenant_column_table(column_side)
                if table_name in owned_tables and isinstance(value_side, BindParameter):
                    explicit.extend(str(v) for v in _bound_values(value_side))

    return tables, explicit


class TenantIsolationGuard:
    """Enforces tenant isolation on a session class via SQLAlchemy events."""

    def __init__(self, strategy: IsolationStrategy, row_level_security: bool = False):
        self.strategy = strategy
        self.row_level_security = row_level_security

    def install(self, session_class) -> None:
        """Register the guard's listeners on ``session_class``."""
        event.listen(session_class, "do_orm_execute", self.on_orm_execute)
        event.listen(session_class, "before_flush", self.before_flush)
        event.listen(session_class, "after_begin", self.after_begin)
        event.listen(TenantOwnedMixin, "load", self.on_load, propagate=True)
        session_class._tenant_guard = self
        logger.info(f"Tenant isolation guard installed ({self.strategy.name})")

    # Session binding

    @staticmethod
    def bind_session(session: Session, tenant_id: str, write: bool = False) -> None:
        """Bind ``session`` to its first tenant and refuse any other afterwards."""
        bound = session.info.get(SESSION_TENANT_KEY)
        if bound is None:
            session.info[SESSION_TENANT_KEY] = tenant_id
            return
        if bound != tenant_id:
            logger.critical(
                f"Session bound to tenant {bound} used under tenant {tenant_id}"
            )
            if write:
                raise CrossTenantWrite(tenant_id, bound, "session")
            raise CrossTenantRead(tenant_id, bound, "session")

    # Statement execution

    def on_orm_execute(self, state: ORMExecuteState) -> None:
        owned_tables = tenant_owned_tables()
        tables, explicit = inspect_statement(state.statement, owned_tables)
        if state.is_orm_statement:
            for mapper in state.all_mappers:
                if issubclass(mapper.class_, TenantOwnedMixin):
                    tables.add(mapper.local_table.name)
        if not tables:
            return

        write = state.is_insert or state.is_update or state.is_delete
        entity = ", ".join(sorted(tables))
        ctx = require_current(f"{'write to' if write else 'read of'} {entity}")
        tenant_id = ctx.tenant_id
        self.bind_session(state.session, tenant_id, write=write)

        for value in explicit:
            if value != tenant_id:
                logger.critical(
                    f"Statement on {entity} names tenant {value} under tenant {tenant_id}"
                )
                if write:
                    raise CrossTenantWrite(tenant_id, value, entity)
                raise CrossTenantRead(tenant_id, value, entity)

        scoped = None
        if not state.is_orm_statement:
            scoped = self._scope_core_statement(state.statement, owned_tables, tables, tenant_id, write, entity)

        if state.is_insert:
            self._stamp_insert(state, tenant_id, entity)
            return
        if state.is_update:
            self._check_update_values(state, tenant_id, entity)

        if scoped is not None:
            self.strategy.apply_core_criteria(state, scoped, tenant_id)
            return

        # Relationship and column loads inherit the criteria from the
        # statement that loaded their parent objects.
        if state.is_column_load or state.is_relationship_load:
            return
        self.strategy.apply_read_criteria(state, tenant_id)

    @staticmethod
    def _scope_core_statement(
        statement, owned_tables: Set[str], tables: Set[str], tenant_id: str, write: bool, entity: str
    ) -> List[Any]:
        """
        Find the tenant-owned FROM entries a Core statement can be filtered on.

        Raises:
            CrossTenantRead, CrossTenantWrite: If a tenant-owned table is reached
                some other way (subquery, CTE, compound select, UPDATE .. FROM)
        """
        if statement.is_dml:
            scoped = scoped_froms(statement.table, owned_tables)
        elif isinstance(statement, Select):
            scoped = [s for f in statement.get_final_froms() for s in scoped_froms(f, owned_tables)]
        else:
            scoped = []

        nested = any(
            element is not statement
            and isinstance(element, Select)
            and inspect_statement(element, owned_tables)[0]
            for element in visitors.iterate(statement)
        )
        unscoped = tables - {_base_table_name(s) for s in scoped}
        if nested or unscoped:
            logger.critical(f"Core statement on {entity} cannot be scoped to tenant {tenant_id}")
            if write:
                raise CrossTenantWrite(tenant_id, None, entity)
            raise CrossTenantRead(tenant_id, None, entity)
        return scoped

    @staticmethod
    def _parameter_rows(state: ORMExecuteState) -> List[dict]:
        params = state.parameters
        if not params:
            return []
        if isinstance(params, (list, tuple)):
            return list(params)
        return [params]

    def _stamp_insert(self, state: ORMExecuteState, tenant_id: str, entity: str) -> None:
        rows = self._parameter_rows(state)
        if rows:
            for row in rows:
                value = row.get(TENANT_COLUMN)
                if value is None:
                    row[TENANT_COLUMN] = tenant_id
                elif str(value) != tenant_id:
                    logger.critical(f"Bulk insert into {entity} for tenant {value} under tenant {tenant_id}")
                    raise CrossTenantWrite(tenant_id, str(value), entity)
            return

        compiled = state.statement.compile().params
        supplied = [v for k, v in compiled.items() if _TENANT_PARAM.match(k) and v is not None]
        for value in supplied:
            if str(value) != tenant_id:
                logger.critical(f"Insert into {entity} for tenant {value} under tenant {tenant_id}")
                raise CrossTenantWrite(tenant_id, str(value), entity)
        if not supplied:
            state.statement = state.statement.values(**{TENANT_COLUMN: tenant_id})

    def _check_update_values(self, state: ORMExecuteState, tenant_id: str, entity: str) -> None:
        values = [row.get(TENANT_COLUMN) for row in self._parameter_rows(state) if TENANT_COLUMN in row]
        compiled = state.statement.compile().params
        if TENANT_COLUMN in compiled:
            values.append(compiled[TENANT_COLUMN])
        for value in values:
            if str(value) != tenant_id:
                logger.critical(f"Update of {entity} reassigns tenant to {value} under tenant {tenant_id}")
                raise CrossTenantWrite(tenant_id, str(value), entity)

    # Unit of work

    def before_flush(self, session: Session, flush_context, instances) -> None:
        new = [obj for obj in session.new if isinstance(obj, TenantOwnedMixin)]
        dirty = [
            obj for obj in session.dirty
            if isinstance(obj, TenantOwnedMixin) and session.is_modified(obj)
        ]
        deleted = [obj for obj in session.deleted if isinstance(obj, TenantOwnedMixin)]
        if not (new or dirty or deleted):
            return

        ctx = require_current("flush of tenant-owned records")
        tenant_id = ctx.tenant_id
        self.bind_session(session, tenant_id, write=True)

        for obj in new:
            if obj.tenant_id is None:
                obj.tenant_id = tenant_id
            elif str(obj.tenant_id) != tenant_id:
                self._reject_write(tenant_id, obj.tenant_id, obj)

        for obj in dirty:
            history = attributes.get_history(obj, TENANT_COLUMN)
            if history.has_changes():
                self._reject_write(tenant_id, obj.tenant_id, obj)
            if str(obj.tenant_id) != tenant_id:
                self._reject_write(tenant_id, obj.tenant_id, obj)

        for obj in deleted:
            if str(obj.tenant_id) != tenant_id:
                self._reject_write(tenant_id, obj.tenant_id, obj)

    @staticmethod
    def _reject_write(tenant_id: str, record_tenant_id, obj) -> None:
        entity = type(obj).__name__
        logger.critical(
            f"Cross-tenant write of {entity} for tenant {record_tenant_id} "
            f"under tenant {tenant_id}"
        )
        raise CrossTenantWrite(tenant_id, str(record_tenant_id), entity)

    # Transactions

    def after_begin(self, session: Session, transaction, connection) -> None:
        ctx = current()
        if ctx is None:
            return
        if self.row_level_security and connection.dialect.name == "postgresql":
            set_tenant_context(connection, ctx.tenant_id)
        self.strategy.on_begin(connection, ctx.tenant_id)

    # Loaded instances

    def verify_instance(self, session: Session, instance) -> None:
        """Reject an instance that belongs to another tenant."""
        if not isinstance(instance, TenantOwnedMixin):
            return
        entity = type(instance).__name__
        ctx = require_current(f"read of {entity}")
        self.bind_session(session, ctx.tenant_id)
        record_tenant_id = instance.__dict__.get(TENANT_COLUMN)
        if record_tenant_id is not None and str(record_tenant_id) != ctx.tenant_id:
            logger.critical(
                f"Cross-tenant read of {entity} for tenant {record_tenant_id} "
                f"under tenant {ctx.tenant_id}"
            )
            raise CrossTenantRead(ctx.tenant_id, str(record_tenant_id), entity)

    def on_load(self, target, context) -> None:
        session = context.session
        if isinstance(session, TenantSession):
            self.verify_instance(session, target)


class TenantSession(Session):
    """
    Session class carrying the tenant isolation guard.

    ``get`` re-validates results because identity-map hits return without
    emitting a statement.
    """

    _tenant_guard: Optional[TenantIsolationGuard] = None

    def get(self, entity, ident, **kwargs):
        instance = super().get(entity, ident, **kwargs)
        guard = type(self)._tenant_guard
        if instance is not None and guard is not None:
            guard.verify_instance(self, instance)
        return instance


_guard: Optional[TenantIsolationGuard] = None


def install_tenant_guard(settings: Settings) -> TenantIsolationGuard:
    """Install the guard on ``TenantSession`` once; later calls reconfigure it."""
    global _guard
    strategy = build_strategy(settings)
    if _guard is None:
        _guard = TenantIsolationGuard(strategy, settings.row_level_security)
        _guard.install(TenantSession)
    else:
        _guard.strategy = strategy
        _guard.row_level_security = settings.row_level_security
    return _guard


def get_tenant_guard() -> Optional[TenantIsolationGuard]:
    return _guard
