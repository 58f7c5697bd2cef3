"""
VGAP Turn Toolkit - Checker Configuration
Options and unit cost table for the turn checker, loadable from YAML.

Example:
    picky: true
    result_mode: false
    checksums: true
    supply_sale: true
    html: false
    costs:
      mines: {money: 4, supplies: 1}
"""

import copy

import yaml
from pathlib import Path


# Unit costs: tritanium, duranium, molybdenum, money, supplies
DEFAULT_COSTS = {
    'mines':         {'tritanium': 0,   'duranium': 0,   'molybdenum': 0,   'money': 4,   'supplies': 1},
    'factories':     {'tritanium': 0,   'duranium': 0,   'molybdenum': 0,   'money': 3,   'supplies': 1},
    'defense_posts': {'tritanium': 0,   'duranium': 0,   'molybdenum': 0,   'money': 10,  'supplies': 1},
    'starbase':      {'tritanium': 402, 'duranium': 120, 'molybdenum': 340, 'money': 900, 'supplies': 0},
    'base_defense':  {'tritanium': 0,   'duranium': 1,   'molybdenum': 0,   'money': 10,  'supplies': 0},
    'fighters':      {'tritanium': 3,   'duranium': 0,   'molybdenum': 2,   'money': 100, 'supplies': 0},
    # torpedo money cost comes from torpspec.dat
    'torpedoes':     {'tritanium': 1,   'duranium': 1,   'molybdenum': 1,   'money': 0,   'supplies': 0},
}

# Cumulative money cost to reach tech levels 1..10
TECH_COSTS = [0, 100, 300, 600, 1000, 1500, 2100, 2800, 3600, 4500]

OPTIONS = ('picky', 'result_mode', 'checksums', 'minus1_special', 'supply_sale', 'html')


class CheckerConfig:
    """Checker options."""

    def __init__(self, picky=False, result_mode=False, checksums=False,
                 minus1_special=False, supply_sale=True, html=False, costs=None):
        self.picky = picky
        self.result_mode = result_mode
        self.checksums = checksums
        self.minus1_special = minus1_special
        self.supply_sale = supply_sale
        self.html = html
        self.costs = copy.deepcopy(DEFAULT_COSTS)
        if costs:
            self.set_costs(costs)

    def set_costs(self, costs):
        for item, values in costs.items():
            self.costs.setdefault(item, {}).update(values)

    def get_cost(self, item):
        """Return (tritanium, duranium, molybdenum, money, supplies) for an item."""
        cost = self.costs[item]
        return (cost.get('tritanium', 0), cost.get('duranium', 0), cost.get('molybdenum', 0),
                cost.get('money', 0), cost.get('supplies', 0))


def parse_config(yaml_content):
    """
    Parse checker configuration from YAML.
    Returns (config, errors).
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        return None, [f"YAML parse error: {e}"]

    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, ["Configuration must be a YAML mapping"]

    errors = []
    options = {}
    for key, value in data.items():
        if key in OPTIONS:
            if not isinstance(value, bool):
                errors.append(f"Option {key} must be true or false")
            else:
                options[key] = value
        elif key == 'costs':
            errors.extend(validate_costs(value))
        else:
            errors.append(f"Unknown option: {key}")

    if errors:
        return None, errors
    return CheckerConfig(costs=data.get('costs'), **options), []


def validate_costs(costs):
    if not isinstance(costs, dict):
        return ["costs must be a mapping"]
    errors = []
    fields = ('tritanium', 'duranium', 'molybdenum', 'money', 'supplies')
    for item, values in costs.items():
        if item not in DEFAULT_COSTS:
            errors.append(f"Unknown cost item: {item}")
            continue
        if not isinstance(values, dict):
            errors.append(f"Cost of {item} must be a mapping")
            continue
        for field, amount in values.items():
            if field not in fields:
                errors.append(f"Unknown cost field for {item}: {field}")
            elif not isinstance(amount, int) or amount < 0:
                errors.append(f"Cost {item}.{field} must be a non-negative integer")
    return errors


def load_config(filepath):
    return parse_config(Path(filepath).read_text(encoding='utf-8'))
