"""
VGAP Turn Toolkit - Resource Summaries
Totals of the resources held by a group of units.
"""

from engine.structures import NUM_TORPEDO_TYPES


# Balance fields, in report order: (attribute, label)
RESOURCE_FIELDS = [
    ('neutronium', 'Neutronium'),
    ('tritanium', 'Tritanium'),
    ('duranium', 'Duranium'),
    ('molybdenum', 'Molybdenum'),
    ('money', 'Money'),
    ('supplies', 'Supplies'),
    ('colonists', 'Colonists'),
]


class ResourceSummary:
    """Summed minerals, money, supplies, colonists, fighters and torpedoes."""

    def __init__(self):
        self.neutronium = 0
        self.tritanium = 0
        self.duranium = 0
        self.molybdenum = 0
        self.money = 0
        self.supplies = 0
        self.colonists = 0
        self.fighters = 0
        self.torpedoes = [0] * NUM_TORPEDO_TYPES

    def copy(self):
        other = ResourceSummary()
        other.__dict__.update(self.__dict__)
        other.torpedoes = list(self.torpedoes)
        return other

    def _add_ore(self, ore):
        self.neutronium += ore[0]
        self.tritanium += ore[1]
        self.duranium += ore[2]
        self.molybdenum += ore[3]

    def add_transfer(self, transfer):
        self._add_ore((transfer.neutronium, transfer.tritanium, transfer.duranium, transfer.molybdenum))
        self.colonists += transfer.colonists
        self.supplies += transfer.supplies

    def add_ship(self, ship):
        """Add a ship's cargo, ammunition and pending transfers."""
        if ship.num_bays != 0:
            self.fighters += ship.ammo
        elif 0 < ship.torpedo_type <= NUM_TORPEDO_TYPES:
            self.torpedoes[ship.torpedo_type - 1] += ship.ammo

        self.colonists += ship.colonists
        self._add_ore(ship.ore)
        self.supplies += ship.supplies
        self.money += ship.money
        self.add_transfer(ship.unload)
        self.add_transfer(ship.transfer)

    def add_planet(self, planet):
        self._add_ore(planet.mined_ore)
        self.supplies += planet.supplies
        self.money += planet.money
        self.colonists += planet.colonists

    def add_base(self, base):
        self.fighters += base.num_fighters
        for i, count in enumerate(base.torpedo_storage):
            self.torpedoes[i] += count

    def buy(self, count, tritanium=0, duranium=0, molybdenum=0, money=0, supplies=0):
        """Deduct the cost of `count` items (negative counts refund)."""
        self.tritanium -= tritanium * count
        self.duranium -= duranium * count
        self.molybdenum -= molybdenum * count
        self.money -= money * count
        self.supplies -= supplies * count
