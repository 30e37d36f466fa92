import sys
from unittest.mock import MagicMock
import pytest
from datetime import timezone, datetime

# Mock Voluptuous
sys.modules["voluptuous"] = MagicMock()

# Mock Home Assistant modules
# We must mock these BEFORE any imports in tests
sys.modules["homeassistant"] = MagicMock()
sys.modules["homeassistant.core"] = MagicMock()
sys.modules["homeassistant.exceptions"] = MagicMock()
sys.modules["homeassistant.config_entries"] = MagicMock()
sys.modules["homeassistant.data_entry_flow"] = MagicMock()
sys.modules["homeassistant.components"] = MagicMock()
sys.modules["homeassistant.components.sensor"] = MagicMock()
sys.modules["homeassistant.components.number"] = MagicMock()
sys.modules["homeassistant.components.switch"] = MagicMock()
sys.modules["homeassistant.helpers"] = MagicMock()
sys.modules["homeassistant.helpers.typing"] = MagicMock()
sys.modules["homeassistant.helpers.entity"] = MagicMock()
sys.modules["homeassistant.helpers.entity_platform"] = MagicMock()
sys.modules["homeassistant.helpers.storage"] = MagicMock()
sys.modules["homeassistant.helpers.selector"] = MagicMock()
sys.modules["homeassistant.util"] = MagicMock()

# Mock specific submodules that might be imported directly
sys.modules["homeassistant.const"] = MagicMock()

# Mock UnitOfEnergy for use in code
class MockUnitOfEnergy:
    WATT_HOUR = "Wh"
    KILO_WATT_HOUR = "kWh"
    MEGA_WATT_HOUR = "MWh"

class MockUnitOfPower:
    WATT = "W"
    KILO_WATT = "kW"

sys.modules["homeassistant.const"].UnitOfEnergy = MockUnitOfEnergy
sys.modules["homeassistant.const"].UnitOfPower = MockUnitOfPower
sys.modules["homeassistant.const"].PERCENTAGE = "%"

class MockConfigEntryNotReady(Exception):
    pass

sys.modules["homeassistant.exceptions"].ConfigEntryNotReady = MockConfigEntryNotReady

# Mock Sensor Device Class
class MockSensorDeviceClass:
    ENERGY = "energy"
    POWER = "power"

# Mock Sensor State Class
class MockSensorStateClass:
    MEASUREMENT = "measurement"
    TOTAL = "total"
    TOTAL_INCREASING = "total_increasing"

sys.modules["homeassistant.components.sensor"].SensorDeviceClass = MockSensorDeviceClass
sys.modules["homeassistant.components.sensor"].SensorStateClass = MockSensorStateClass

# Helper to simulate Entity properties
class MockEntityMixin:
    @property
    def name(self):
        return getattr(self, "_attr_name", None)

    @property
    def unique_id(self):
        return getattr(self, "_attr_unique_id", None)

    @property
    def native_value(self):
        return getattr(self, "_attr_native_value", None)

    @property
    def extra_state_attributes(self):
        return getattr(self, "_attr_extra_state_attributes", {})

    @property
    def device_info(self):
         return getattr(self, "_attr_device_info", None)

    def async_write_ha_state(self):
        pass


# We need to be careful with update_coordinator as it's a class
# Define a dummy class that accepts init args
class MockDataUpdateCoordinator:
    def __init__(self, hass, logger, name, update_interval):
        self.hass = hass
        self.logger = logger
        self.name = name
        self.update_interval = update_interval
        self.data = {}
        self.refresh_requests = 0

    async def async_refresh(self):
        pass

    async def async_request_refresh(self):
        self.refresh_requests += 1

class MockCoordinatorEntity(MockEntityMixin):
    def __init__(self, coordinator):
        self.coordinator = coordinator

mock_coord_module = MagicMock()
mock_coord_module.DataUpdateCoordinator = MockDataUpdateCoordinator
mock_coord_module.CoordinatorEntity = MockCoordinatorEntity
sys.modules["homeassistant.helpers.update_coordinator"] = mock_coord_module

class MockEntity(MockEntityMixin):
    pass

sys.modules["homeassistant.components.sensor"].SensorEntity = MockEntity
sys.modules["homeassistant.components.number"].NumberEntity = MockEntity
sys.modules["homeassistant.components.switch"].SwitchEntity = MockEntity

# Mock util.dt with REAL timezone
mock_dt = MagicMock(name='mock_dt_real')
mock_dt.UTC = timezone.utc # Use real UTC object
mock_dt.as_utc.side_effect = lambda d: d.astimezone(timezone.utc)
mock_dt.now.return_value = datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
mock_dt.utcnow.return_value = datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
# Implement as_local to just return as-is (simulating UTC/same timezone)
mock_dt.as_local.side_effect = lambda d: d

# CRITICAL: Ensure imports via parent module also get the specific mock
sys.modules["homeassistant.util"].dt = mock_dt
sys.modules["homeassistant.util.dt"] = mock_dt

@pytest.fixture
def hass():
    """Mock Home Assistant object."""
    h = MagicMock()
    h.config.units.is_metric = True
    h.config.time_zone = "Europe/Oslo"
    return h

@pytest.fixture
def entry():
    """Mock config entry with a single energy meter."""
    e = MagicMock()
    e.entry_id = "test_entry"
    e.title = "Home"
    e.data = {"energy_sensor": "sensor.house_energy"}
    e.options = {}
    return e
