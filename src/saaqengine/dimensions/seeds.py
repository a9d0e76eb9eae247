"""Fixed dimension values inserted at schema creation.

Seeding gives codes their descriptions up front; ingestion still creates any
code it meets that is not listed here.
"""

from saaqengine.dimensions.registry import Dimension

FUEL_TYPES: list[tuple[str, str]] = [
    ("E", "Gasoline"),
    ("D", "Diesel"),
    ("L", "Electric"),
    ("H", "Hybrid"),
    ("W", "Plug-in Hybrid"),
    ("C", "Hydrogen"),
    ("P", "Propane"),
    ("N", "Natural Gas"),
    ("M", "Methanol"),
    ("T", "Ethanol"),
    ("A", "Other"),
    ("S", "Non-powered"),
    ("U", "Unknown"),
]

VEHICLE_CLASSES: list[tuple[str, str]] = [
    ("PAU", "Personal automobile/light truck"),
    ("PMC", "Personal motorcycle"),
    ("PCY", "Personal moped"),
    ("PHM", "Personal motorhome"),
    ("CAU", "Commercial automobile/light truck"),
    ("CMC", "Commercial motorcycle"),
    ("CCY", "Commercial moped"),
    ("CHM", "Commercial motorhome"),
    ("TTA", "Taxi"),
    ("TAB", "Bus"),
    ("TAS", "School bus"),
    ("BCA", "Truck/road tractor"),
    ("CVO", "Tool vehicle"),
    ("COT", "Other commercial"),
    ("RAU", "Restricted automobile/light truck"),
    ("RMC", "Restricted motorcycle"),
    ("RCY", "Restricted moped"),
    ("RHM", "Restricted motorhome"),
    ("RAB", "Restricted bus"),
    ("RCA", "Restricted truck/road tractor"),
    ("RMN", "Restricted snowmobile"),
    ("ROT", "Restricted other"),
    ("HAU", "Off-road automobile/light truck"),
    ("HCY", "Off-road moped"),
    ("HMN", "Off-road snowmobile"),
    ("UNK", "Unknown"),
]

VEHICLE_TYPES: list[tuple[str, str]] = [
    ("AU", "Automobile or light truck"),
    ("CA", "Truck or road tractor"),
    ("MC", "Motorcycle"),
    ("AB", "Bus"),
    ("VO", "Tool vehicle"),
    ("HM", "Motorhome"),
    ("CY", "Moped"),
    ("MN", "Snowmobile"),
    ("VT", "All-terrain vehicle"),
    ("NV", "Other off-road vehicle"),
]

ADMIN_REGIONS: list[tuple[str, str]] = [
    ("01", "Bas-Saint-Laurent"),
    ("02", "Saguenay–Lac-Saint-Jean"),
    ("03", "Capitale-Nationale"),
    ("04", "Mauricie"),
    ("05", "Estrie"),
    ("06", "Montréal"),
    ("07", "Outaouais"),
    ("08", "Abitibi-Témiscamingue"),
    ("09", "Côte-Nord"),
    ("10", "Nord-du-Québec"),
    ("11", "Gaspésie–Îles-de-la-Madeleine"),
    ("12", "Chaudière-Appalaches"),
    ("13", "Laval"),
    ("14", "Lanaudière"),
    ("15", "Laurentides"),
    ("16", "Montérégie"),
    ("17", "Centre-du-Québec"),
]

AGE_GROUPS = ["16-19", "20-24", "25-34", "35-44", "45-54", "55-64", "65-74", "75+"]

GENDERS: list[tuple[str, str]] = [("M", "Male"), ("F", "Female")]

LICENSE_TYPES: list[tuple[str, str]] = [
    ("APPRENTI", "Learner"),
    ("PROBATOIRE", "Probationary"),
    ("RÉGULIER", "Regular"),
]

SEEDS: dict[Dimension, list[dict[str, str]]] = {
    Dimension.FUEL_TYPE: [{"code": c, "description": d} for c, d in FUEL_TYPES],
    Dimension.VEHICLE_CLASS: [{"code": c, "description": d} for c, d in VEHICLE_CLASSES],
    Dimension.VEHICLE_TYPE: [{"code": c, "description": d} for c, d in VEHICLE_TYPES],
    Dimension.ADMIN_REGION: [{"code": c, "name": n} for c, n in ADMIN_REGIONS],
    Dimension.AGE_GROUP: [{"range_text": r} for r in AGE_GROUPS],
    Dimension.GENDER: [{"code": c, "description": d} for c, d in GENDERS],
    Dimension.LICENSE_TYPE: [{"type_name": t, "description": d} for t, d in LICENSE_TYPES],
}
