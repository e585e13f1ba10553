from types import MappingProxyType

from services.models import CompatibilityRule


def _rule(imdg_class, incompatible_with, description):
    return CompatibilityRule(
        imdg_class=imdg_class,
        incompatible_with=frozenset(incompatible_with),
        description=description,
    )


# Segregation table as maintained by operations. Entries are not all mutual
# (e.g. Classe 4.2 lists Classe 3 but not the reverse); lookups check both
# sides instead of rewriting the data.
_RULES = (
    _rule(
        "Classe 1",
        [
            "Classe 2.1", "Classe 2.2", "Classe 2.3", "Classe 3", "Classe 4.1",
            "Classe 4.2", "Classe 4.3", "Classe 5.1", "Classe 5.2", "Classe 6.1",
            "Classe 6.2", "Classe 7", "Classe 8", "Classe 9",
        ],
        "Explosifs - Incompatibles avec toutes les autres classes",
    ),
    _rule(
        "Classe 2.1",
        ["Classe 1", "Classe 5.1", "Classe 5.2", "Classe 6.1", "Classe 6.2", "Classe 8", "Classe 7"],
        "Gaz inflammables",
    ),
    _rule(
        "Classe 2.2",
        [],
        "Gaz non inflammables, non toxiques - Compatible avec la plupart des classes",
    ),
    _rule(
        "Classe 2.3",
        ["Classe 1", "Classe 5.1", "Classe 6.1", "Classe 6.2", "Classe 8"],
        "Gaz toxiques",
    ),
    _rule(
        "Classe 3",
        ["Classe 1", "Classe 5.1", "Classe 5.2", "Classe 6.1", "Classe 8"],
        "Liquides inflammables",
    ),
    _rule(
        "Classe 4.1",
        ["Classe 1", "Classe 5.1", "Classe 5.2", "Classe 6.1", "Classe 8"],
        "Solides inflammables",
    ),
    _rule(
        "Classe 4.2",
        [
            "Classe 1", "Classe 3", "Classe 4.1", "Classe 4.3", "Classe 5.1",
            "Classe 5.2", "Classe 6.1", "Classe 8",
        ],
        "Matières auto-inflammables",
    ),
    _rule(
        "Classe 4.3",
        ["Classe 1", "Classe 3", "Classe 5.1", "Classe 5.2", "Classe 6.1", "Classe 8"],
        "Réagissant dangereusement à l'eau",
    ),
    _rule(
        "Classe 5.1",
        [
            "Classe 1", "Classe 2.1", "Classe 3", "Classe 4.1", "Classe 4.2",
            "Classe 4.3", "Classe 5.2", "Classe 6.1", "Classe 8",
        ],
        "Comburants (favorisent le feu)",
    ),
    _rule(
        "Classe 5.2",
        [
            "Classe 1", "Classe 2.1", "Classe 3", "Classe 4.1", "Classe 4.2",
            "Classe 4.3", "Classe 5.1", "Classe 6.1", "Classe 8",
        ],
        "Peroxydes organiques - Extrêmement instables",
    ),
    _rule(
        "Classe 6.1",
        [
            "Classe 1", "Classe 2.1", "Classe 2.3", "Classe 3", "Classe 4.1",
            "Classe 4.2", "Classe 4.3", "Classe 5.1", "Classe 5.2", "Classe 8",
        ],
        "Substances toxiques",
    ),
    _rule(
        "Classe 6.2",
        [
            "Classe 1", "Classe 2.1", "Classe 2.3", "Classe 3", "Classe 4.1",
            "Classe 4.2", "Classe 4.3", "Classe 5.1", "Classe 5.2", "Classe 6.1",
            "Classe 7", "Classe 8", "Classe 9",
        ],
        "Substances infectieuses - Toujours isoler",
    ),
    _rule(
        "Classe 7",
        ["Classe 1", "Classe 2.1", "Classe 6.2"],
        "Radioactifs - Transport spécial",
    ),
    _rule(
        "Classe 8",
        [
            "Classe 1", "Classe 2.1", "Classe 2.3", "Classe 3", "Classe 4.1",
            "Classe 4.2", "Classe 4.3", "Classe 5.1", "Classe 5.2", "Classe 6.1",
            "Classe 6.2",
        ],
        "Corrosifs",
    ),
    _rule(
        "Classe 9",
        ["Classe 1", "Classe 5.1"],
        "Divers - Vérifier au cas par cas (Lithium = à éloigner des classes 1 et 5.1)",
    ),
)

IMDG_RULES = MappingProxyType({rule.imdg_class: rule for rule in _RULES})
IMDG_CLASSES = tuple(rule.imdg_class for rule in _RULES)


def _normalize_class(value):
    if value is None:
        return ""
    return str(value).strip()


def get_rule(imdg_class):
    return IMDG_RULES.get(_normalize_class(imdg_class))


def list_rules():
    return [IMDG_RULES[imdg_class] for imdg_class in IMDG_CLASSES]


def is_known_class(imdg_class):
    return _normalize_class(imdg_class) in IMDG_RULES


def incompatible_classes_for(imdg_class):
    rule = get_rule(imdg_class)
    return rule.incompatible_with if rule else frozenset()


def are_compatible(class_a, class_b, strict=False):
    """Return whether two hazard classes may share a unit.

    An absent class is a non-dangerous item and is compatible with anything.
    A class missing from the table is treated as compatible unless ``strict``
    is set, in which case it cannot be co-loaded with another dangerous class.
    """

    class_a = _normalize_class(class_a)
    class_b = _normalize_class(class_b)
    if not class_a or not class_b:
        return True

    rule_a = IMDG_RULES.get(class_a)
    rule_b = IMDG_RULES.get(class_b)
    if rule_a is None or rule_b is None:
        return not strict

    return class_b not in rule_a.incompatible_with and class_a not in rule_b.incompatible_with


def _describe(imdg_class):
    rule = IMDG_RULES.get(imdg_class)
    if rule and rule.description:
        return rule.description
    return imdg_class


def check_group_compatibility(classes, strict=False):
    """Pairwise scan of every hazard class present in one unit.

    Returns ``{"compatible": bool, "conflicts": [...]}`` listing every
    conflicting pair so the operator sees the full reason for a rejection.
    """

    valid_classes = [_normalize_class(value) for value in classes or []]
    valid_classes = [value for value in valid_classes if value]

    conflicts = []
    for i in range(len(valid_classes)):
        for j in range(i + 1, len(valid_classes)):
            class_a = valid_classes[i]
            class_b = valid_classes[j]
            if are_compatible(class_a, class_b, strict=strict):
                continue
            conflicts.append(
                {
                    "class_a": class_a,
                    "class_b": class_b,
                    "description": f"{_describe(class_a)} incompatible avec {_describe(class_b)}",
                }
            )

    return {"compatible": not conflicts, "conflicts": conflicts}


def find_asymmetric_pairs():
    """Pairs (A, B) where A lists B as incompatible but B does not list A."""

    pairs = []
    for imdg_class in IMDG_CLASSES:
        rule = IMDG_RULES[imdg_class]
        for other in IMDG_CLASSES:
            if other not in rule.incompatible_with:
                continue
            other_rule = IMDG_RULES[other]
            if imdg_class not in other_rule.incompatible_with:
                pairs.append((imdg_class, other))
    return pairs


def hazard_classes_for_products(products):
    # A class on the line is enough; the dangerous flag is not always kept in sync.
    classes = []
    for line in products or []:
        imdg_class = _normalize_class(line.imdg_class)
        if imdg_class:
            classes.append(imdg_class)
    return classes


def rule_to_dict(rule):
    return {
        "class": rule.imdg_class,
        "incompatible_with": [value for value in IMDG_CLASSES if value in rule.incompatible_with],
        "description": rule.description,
    }
