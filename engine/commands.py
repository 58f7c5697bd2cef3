"""
VGAP Turn Toolkit - Command Codec
Maps turn command codes to their target kind, payload size, record offset and
name. Unknown codes classify as undefined; they are never an error.
"""

from collections import namedtuple


# Command kinds, in canonical turn order
UNDEFINED = 0
SHIP = 1
PLANET = 2
BASE = 3
OTHER = 4

KIND_NAMES = {
    UNDEFINED: 'Undefined',
    SHIP: 'Ship',
    PLANET: 'Planet',
    BASE: 'Base',
    OTHER: 'Other',
}

CommandDefinition = namedtuple('CommandDefinition', 'kind size offset name')

UNDEFINED_COMMAND = CommandDefinition(UNDEFINED, 0, 0, None)


# ======================================================================
# Command codes
# ======================================================================

SHIP_CHANGE_FC = 1
SHIP_CHANGE_SPEED = 2
SHIP_CHANGE_WAYPOINT = 3
SHIP_CHANGE_MISSION = 4
SHIP_CHANGE_PRIMARY_ENEMY = 5
SHIP_TOW_SHIP = 6
SHIP_CHANGE_NAME = 7
SHIP_BEAM_DOWN_CARGO = 8
SHIP_TRANSFER_CARGO = 9
SHIP_INTERCEPT = 10
SHIP_CHANGE_NEUTRONIUM = 11
SHIP_CHANGE_TRITANIUM = 12
SHIP_CHANGE_DURANIUM = 13
SHIP_CHANGE_MOLYBDENUM = 14
SHIP_CHANGE_SUPPLIES = 15
SHIP_CHANGE_COLONISTS = 16
SHIP_CHANGE_TORPEDOES = 17
SHIP_CHANGE_MONEY = 18

PLANET_CHANGE_FC = 21
PLANET_CHANGE_MINES = 22
PLANET_CHANGE_FACTORIES = 23
PLANET_CHANGE_DEFENSE = 24
PLANET_CHANGE_NEUTRONIUM = 25
PLANET_CHANGE_TRITANIUM = 26
PLANET_CHANGE_DURANIUM = 27
PLANET_CHANGE_MOLYBDENUM = 28
PLANET_CHANGE_COLONISTS = 29
PLANET_CHANGE_SUPPLIES = 30
PLANET_CHANGE_MONEY = 31
PLANET_COLONIST_TAX = 32
PLANET_NATIVE_TAX = 33
PLANET_BUILD_BASE = 34

BASE_CHANGE_DEFENSE = 40
BASE_UPGRADE_ENGINE_TECH = 41
BASE_UPGRADE_HULL_TECH = 42
BASE_UPGRADE_WEAPON_TECH = 43
BASE_BUILD_ENGINES = 44
BASE_BUILD_HULLS = 45
BASE_BUILD_WEAPONS = 46
BASE_BUILD_LAUNCHERS = 47
BASE_BUILD_TORPEDOES = 48
BASE_BUILD_FIGHTERS = 49
BASE_FIX_RECYCLE_SHIP_ID = 50
BASE_FIX_RECYCLE_SHIP = 51
BASE_CHANGE_MISSION = 52
BASE_BUILD_SHIP = 53
BASE_UPGRADE_TORP_TECH = 54

SEND_MESSAGE = 60
CHANGE_PASSWORD = 61
SEND_BACK = 62

SHIP_FIRST, SHIP_LAST = SHIP_CHANGE_FC, SHIP_CHANGE_MONEY
PLANET_FIRST, PLANET_LAST = PLANET_CHANGE_FC, PLANET_NATIVE_TAX
BASE_FIRST, BASE_LAST = BASE_CHANGE_DEFENSE, BASE_UPGRADE_TORP_TECH


COMMAND_DEFINITIONS = {
    SHIP_CHANGE_FC:            CommandDefinition(SHIP, 3, 4, 'ShipChangeFc'),
    SHIP_CHANGE_SPEED:         CommandDefinition(SHIP, 2, 7, 'ShipChangeSpeed'),
    SHIP_CHANGE_WAYPOINT:      CommandDefinition(SHIP, 4, 9, 'ShipChangeWaypoint'),
    SHIP_CHANGE_MISSION:       CommandDefinition(SHIP, 2, 33, 'ShipChangeMission'),
    SHIP_CHANGE_PRIMARY_ENEMY: CommandDefinition(SHIP, 2, 35, 'ShipChangePrimaryEnemy'),
    SHIP_TOW_SHIP:             CommandDefinition(SHIP, 2, 37, 'ShipTowShip'),
    SHIP_CHANGE_NAME:          CommandDefinition(SHIP, 20, 45, 'ShipChangeName'),
    SHIP_BEAM_DOWN_CARGO:      CommandDefinition(SHIP, 14, 75, 'ShipBeamDownCargo'),
    SHIP_TRANSFER_CARGO:       CommandDefinition(SHIP, 14, 89, 'ShipTransferCargo'),
    SHIP_INTERCEPT:            CommandDefinition(SHIP, 2, 103, 'ShipIntercept'),
    SHIP_CHANGE_NEUTRONIUM:    CommandDefinition(SHIP, 2, 65, 'ShipChangeNeutronium'),
    SHIP_CHANGE_TRITANIUM:     CommandDefinition(SHIP, 2, 67, 'ShipChangeTritanium'),
    SHIP_CHANGE_DURANIUM:      CommandDefinition(SHIP, 2, 69, 'ShipChangeDuranium'),
    SHIP_CHANGE_MOLYBDENUM:    CommandDefinition(SHIP, 2, 71, 'ShipChangeMolybdenum'),
    SHIP_CHANGE_SUPPLIES:      CommandDefinition(SHIP, 2, 73, 'ShipChangeSupplies'),
    SHIP_CHANGE_COLONISTS:     CommandDefinition(SHIP, 2, 43, 'ShipChangeColonists'),
    SHIP_CHANGE_TORPEDOES:     CommandDefinition(SHIP, 2, 29, 'ShipChangeTorpedoes'),
    SHIP_CHANGE_MONEY:         CommandDefinition(SHIP, 2, 105, 'ShipChangeMoney'),

    PLANET_CHANGE_FC:          CommandDefinition(PLANET, 3, 4, 'PlanetChangeFc'),
    PLANET_CHANGE_MINES:       CommandDefinition(PLANET, 2, 7, 'PlanetChangeMines'),
    PLANET_CHANGE_FACTORIES:   CommandDefinition(PLANET, 2, 9, 'PlanetChangeFactories'),
    PLANET_CHANGE_DEFENSE:     CommandDefinition(PLANET, 2, 11, 'PlanetChangeDefense'),
    PLANET_CHANGE_NEUTRONIUM:  CommandDefinition(PLANET, 4, 13, 'PlanetChangeNeutronium'),
    PLANET_CHANGE_TRITANIUM:   CommandDefinition(PLANET, 4, 17, 'PlanetChangeTritanium'),
    PLANET_CHANGE_DURANIUM:    CommandDefinition(PLANET, 4, 21, 'PlanetChangeDuranium'),
    PLANET_CHANGE_MOLYBDENUM:  CommandDefinition(PLANET, 4, 25, 'PlanetChangeMolybdenum'),
    PLANET_CHANGE_COLONISTS:   CommandDefinition(PLANET, 4, 29, 'PlanetChangeColonists'),
    PLANET_CHANGE_SUPPLIES:    CommandDefinition(PLANET, 4, 33, 'PlanetChangeSupplies'),
    PLANET_CHANGE_MONEY:       CommandDefinition(PLANET, 4, 37, 'PlanetChangeMoney'),
    PLANET_COLONIST_TAX:       CommandDefinition(PLANET, 2, 65, 'PlanetColonistTax'),
    PLANET_NATIVE_TAX:         CommandDefinition(PLANET, 2, 67, 'PlanetNativeTax'),
    PLANET_BUILD_BASE:         CommandDefinition(PLANET, 0, 83, 'PlanetBuildBase'),

    BASE_CHANGE_DEFENSE:       CommandDefinition(BASE, 2, 4, 'BaseChangeDefense'),
    BASE_UPGRADE_ENGINE_TECH:  CommandDefinition(BASE, 2, 8, 'BaseUpgradeEngineTech'),
    BASE_UPGRADE_HULL_TECH:    CommandDefinition(BASE, 2, 10, 'BaseUpgradeHullTech'),
    BASE_UPGRADE_WEAPON_TECH:  CommandDefinition(BASE, 2, 12, 'BaseUpgradeWeaponTech'),
    BASE_BUILD_ENGINES:        CommandDefinition(BASE, 18, 16, 'BaseBuildEngines'),
    BASE_BUILD_HULLS:          CommandDefinition(BASE, 40, 34, 'BaseBuildHulls'),
    BASE_BUILD_WEAPONS:        CommandDefinition(BASE, 20, 74, 'BaseBuildWeapons'),
    BASE_BUILD_LAUNCHERS:      CommandDefinition(BASE, 20, 94, 'BaseBuildLaunchers'),
    BASE_BUILD_TORPEDOES:      CommandDefinition(BASE, 20, 114, 'BaseBuildTorpedoes'),
    BASE_BUILD_FIGHTERS:       CommandDefinition(BASE, 2, 134, 'BaseBuildFighters'),
    BASE_FIX_RECYCLE_SHIP_ID:  CommandDefinition(BASE, 2, 136, 'BaseFixRecycleShipId'),
    BASE_FIX_RECYCLE_SHIP:     CommandDefinition(BASE, 2, 138, 'BaseFixRecycleShip'),
    BASE_CHANGE_MISSION:       CommandDefinition(BASE, 2, 140, 'BaseChangeMission'),
    BASE_BUILD_SHIP:           CommandDefinition(BASE, 14, 142, 'BaseBuildShip'),
    BASE_UPGRADE_TORP_TECH:    CommandDefinition(BASE, 2, 14, 'BaseUpgradeTorpTech'),

    # Payload size of these depends on the command itself
    SEND_MESSAGE:              CommandDefinition(OTHER, 0, 0, 'SendMessage'),
    CHANGE_PASSWORD:           CommandDefinition(OTHER, 10, 0, 'ChangePassword'),
    SEND_BACK:                 CommandDefinition(OTHER, 0, 0, 'SendBack'),
}


def classify(code):
    """Return the CommandDefinition for a command code."""
    return COMMAND_DEFINITIONS.get(code, UNDEFINED_COMMAND)


def get_command_kind(code):
    return classify(code).kind


def get_command_name(code):
    """Name of a command code, or None if it is undefined."""
    return classify(code).name


def get_record_offset(code):
    return classify(code).offset


def commands_in_range(first, last):
    """Codes between first and last (inclusive) that are defined."""
    return [code for code in range(first, last + 1)
            if classify(code).kind != UNDEFINED]
