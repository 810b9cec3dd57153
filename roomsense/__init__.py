"""
# A presence node for Bluetooth room tracking

Discovers nearby Bluetooth Classic and Low Energy devices and republishes them
as entities whose updates are debounced, smoothed and tagged with authority.

The Bluetooth side lives in `roomsense.bluetooth`: an `AdapterManager` that
arbitrates one radio between continuous LE scanning and exclusive inquiries,
plus the `LowEnergyService` and `ClassicInquiryService` engines built on it.

The entity side lives in `roomsense.entities`: `EntityRegistry.add()` returns an
`EntityProxy` whose writes flow through the entity's behaviors and are published
as `EntityUpdate` messages.

Run `python -m roomsense --help` for the command line node.
"""

__version__ = "0.1.0"
