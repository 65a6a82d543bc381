"""
Per-source-table catalog: stage layout, typed clean columns, keys and references.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

DIMENSION = "dimension"
TRANSACTIONAL = "transactional"

STAGE_AUDIT_COLUMNS = ["_stg_file_name", "_stg_file_load_ts", "_stg_file_md5", "_copy_data_ts"]


@dataclass(frozen=True)
class ColumnSpec:
    """One clean-layer column and the stage column it is typed from."""

    name: str
    source: Optional[str]
    data_type: str = "string"
    nullable: bool = True

    @property
    def is_derived(self) -> bool:
        return self.source is None


@dataclass
class EntitySpec:
    """Layout and keys of one source entity across the three layers."""

    name: str
    kind: str
    natural_key: List[str]
    columns: List[ColumnSpec]
    created_column: Optional[str] = "created_dt"
    modified_column: Optional[str] = "modified_dt"
    references: Dict[str, str] = field(default_factory=dict)
    dimension_table: Optional[str] = None
    surrogate_key_column: Optional[str] = None

    def __post_init__(self):
        names = self.column_names
        missing_keys = set(self.natural_key) - set(names)
        if missing_keys:
            raise ValueError(f"{self.name}: natural key columns not declared: {missing_keys}")
        missing_refs = set(self.references) - set(names)
        if missing_refs:
            raise ValueError(f"{self.name}: reference columns not declared: {missing_refs}")
        if self.kind == DIMENSION and not (self.dimension_table and self.surrogate_key_column):
            raise ValueError(f"{self.name}: dimensions need dimension_table and surrogate_key_column")

    @property
    def is_dimension(self) -> bool:
        return self.kind == DIMENSION

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def source_columns(self) -> List[str]:
        """Stage (CSV header) columns in file order."""
        return [c.source for c in self.columns if not c.is_derived]

    @property
    def required_columns(self) -> List[str]:
        return [c.name for c in self.columns if not c.nullable]

    @property
    def tracked_columns(self) -> List[str]:
        """Business attributes versioned by the dimension, excluding keys and audit timestamps."""
        excluded = set(self.natural_key) | {self.created_column, self.modified_column}
        return [c.name for c in self.columns if c.name not in excluded]

    def column(self, name: str) -> ColumnSpec:
        for column_spec in self.columns:
            if column_spec.name == name:
                return column_spec
        raise KeyError(f"{self.name} has no column {name}")


def _c(name, source, data_type="string", nullable=True) -> ColumnSpec:
    return ColumnSpec(name, source, data_type, nullable)


LOCATION = EntitySpec(
    name="location",
    kind=DIMENSION,
    natural_key=["location_id"],
    columns=[
        _c("location_id", "locationid", "bigint", nullable=False),
        _c("city", "city", nullable=False),
        _c("state", "state", nullable=False),
        _c("state_code", None),
        _c("is_union_territory", None),
        _c("capital_city_flag", None, "boolean"),
        _c("city_tier", None),
        _c("zip_code", "zipcode"),
        _c("active_flag", "activeflag"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    dimension_table="restaurant_location_dim",
    surrogate_key_column="restaurant_location_hk",
)

RESTAURANT = EntitySpec(
    name="restaurant",
    kind=DIMENSION,
    natural_key=["restaurant_id"],
    columns=[
        _c("restaurant_id", "restaurantid", "bigint", nullable=False),
        _c("name", "name", nullable=False),
        _c("cuisine_type", "cuisinetype"),
        _c("pricing_for_two", "pricing_for_2", "decimal(10,2)"),
        _c("restaurant_phone", "restaurant_phone"),
        _c("operating_hours", "operatinghours"),
        _c("location_id_fk", "locationid", "bigint"),
        _c("active_flag", "activeflag"),
        _c("open_status", "openstatus"),
        _c("locality", "locality"),
        _c("restaurant_address", "restaurant_address"),
        _c("latitude", "latitude", "decimal(9,6)"),
        _c("longitude", "longitude", "decimal(9,6)"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"location_id_fk": "location"},
    dimension_table="restaurant_dim",
    surrogate_key_column="restaurant_hk",
)

MENU = EntitySpec(
    name="menu",
    kind=DIMENSION,
    natural_key=["menu_id"],
    columns=[
        _c("menu_id", "menuid", "bigint", nullable=False),
        _c("restaurant_id_fk", "restaurantid", "bigint"),
        _c("item_name", "itemname", nullable=False),
        _c("description", "description"),
        _c("price", "price", "decimal(10,2)", nullable=False),
        _c("category", "category"),
        _c("availability", "availability", "boolean"),
        _c("item_type", "itemtype"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"restaurant_id_fk": "restaurant"},
    dimension_table="menu_dim",
    surrogate_key_column="menu_dim_hk",
)

CUSTOMER = EntitySpec(
    name="customer",
    kind=DIMENSION,
    natural_key=["customer_id"],
    columns=[
        _c("customer_id", "customerid", nullable=False),
        _c("name", "name", nullable=False),
        _c("mobile", "mobile"),
        _c("email", "email"),
        _c("login_by_using", "loginbyusing"),
        _c("gender", "gender"),
        _c("dob", "dob", "date"),
        _c("anniversary", "anniversary", "date"),
        _c("preferences", "preferences"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    dimension_table="customer_dim",
    surrogate_key_column="customer_hk",
)

CUSTOMER_ADDRESS = EntitySpec(
    name="customer_address",
    kind=DIMENSION,
    natural_key=["address_id"],
    columns=[
        _c("address_id", "addressid", "bigint", nullable=False),
        _c("customer_id_fk", "customerid", nullable=False),
        _c("flat_no", "flatno"),
        _c("house_no", "houseno"),
        _c("floor", "floor"),
        _c("building", "building"),
        _c("landmark", "landmark"),
        _c("locality", "locality"),
        _c("city", "city"),
        _c("state", "state"),
        _c("pincode", "pincode"),
        _c("coordinates", "coordinates"),
        _c("primary_flag", "primaryflag"),
        _c("address_type", "addresstype"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"customer_id_fk": "customer"},
    dimension_table="customer_address_dim",
    surrogate_key_column="customer_address_hk",
)

DELIVERY_AGENT = EntitySpec(
    name="delivery_agent",
    kind=DIMENSION,
    natural_key=["delivery_agent_id"],
    columns=[
        _c("delivery_agent_id", "deliveryagentid", "bigint", nullable=False),
        _c("name", "name", nullable=False),
        _c("phone", "phone"),
        _c("vehicle_type", "vehicletype"),
        _c("location_id_fk", "locationid", "bigint"),
        _c("status", "status"),
        _c("gender", "gender"),
        _c("rating", "rating", "decimal(4,2)"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"location_id_fk": "location"},
    dimension_table="delivery_agent_dim",
    surrogate_key_column="delivery_agent_hk",
)

ORDERS = EntitySpec(
    name="orders",
    kind=TRANSACTIONAL,
    natural_key=["order_id"],
    columns=[
        _c("order_id", "orderid", "bigint", nullable=False),
        _c("customer_id_fk", "customerid", nullable=False),
        _c("restaurant_id_fk", "restaurantid", "bigint", nullable=False),
        _c("order_date", "orderdate", "timestamp", nullable=False),
        _c("total_amount", "totalamount", "decimal(10,2)"),
        _c("status", "status"),
        _c("payment_method", "paymentmethod"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"customer_id_fk": "customer", "restaurant_id_fk": "restaurant"},
)

ORDER_ITEM = EntitySpec(
    name="order_item",
    kind=TRANSACTIONAL,
    natural_key=["order_item_id"],
    columns=[
        _c("order_item_id", "orderitemid", "bigint", nullable=False),
        _c("order_id_fk", "orderid", "bigint", nullable=False),
        _c("menu_id_fk", "menuid", "bigint", nullable=False),
        _c("quantity", "quantity", "decimal(10,2)"),
        _c("price", "price", "decimal(10,2)"),
        _c("subtotal", "subtotal", "decimal(10,2)"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={"order_id_fk": "orders", "menu_id_fk": "menu"},
)

DELIVERY = EntitySpec(
    name="delivery",
    kind=TRANSACTIONAL,
    natural_key=["delivery_id"],
    columns=[
        _c("delivery_id", "deliveryid", "bigint", nullable=False),
        _c("order_id_fk", "orderid", "bigint", nullable=False),
        _c("delivery_agent_id_fk", "deliveryagentid", "bigint"),
        _c("delivery_status", "deliverystatus"),
        _c("estimated_time", "estimatedtime"),
        _c("customer_address_id_fk", "addressid", "bigint"),
        _c("delivery_date", "deliverydate", "timestamp"),
        _c("created_dt", "createddate", "timestamp"),
        _c("modified_dt", "modifieddate", "timestamp"),
    ],
    references={
        "order_id_fk": "orders",
        "delivery_agent_id_fk": "delivery_agent",
        "customer_address_id_fk": "customer_address",
    },
)

LOGIN_AUDIT = EntitySpec(
    name="login_audit",
    kind=TRANSACTIONAL,
    natural_key=["login_id"],
    columns=[
        _c("login_id", "loginid", "bigint", nullable=False),
        _c("customer_id_fk", "customerid", nullable=False),
        _c("login_type", "logintype"),
        _c("device_interface", "deviceinterface"),
        _c("mobile_device_name", "mobiledevicename"),
        _c("web_interface", "webinterface"),
        _c("last_login", "lastlogin", "timestamp"),
    ],
    created_column=None,
    modified_column="last_login",
    references={"customer_id_fk": "customer"},
)

# Dependency order: referenced entities come first
ENTITY_ORDER = [
    "location",
    "restaurant",
    "menu",
    "customer",
    "customer_address",
    "delivery_agent",
    "orders",
    "order_item",
    "delivery",
    "login_audit",
]

ENTITIES: Dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (LOCATION, RESTAURANT, MENU, CUSTOMER, CUSTOMER_ADDRESS,
                 DELIVERY_AGENT, ORDERS, ORDER_ITEM, DELIVERY, LOGIN_AUDIT)
}


def get_entity(name: str) -> EntitySpec:
    """
    Look up an entity by name.

    Raises:
        KeyError: If the entity is unknown
    """
    try:
        return ENTITIES[name]
    except KeyError:
        raise KeyError(f"Unknown entity '{name}'. Known entities: {ENTITY_ORDER}")


def dimension_entities() -> List[EntitySpec]:
    return [ENTITIES[name] for name in ENTITY_ORDER if ENTITIES[name].is_dimension]
