"""Tests for payload decoding at the device boundary."""

from suspension_tuner.core.models import (
    ActuatorKey,
    ActuatorState,
    BatteryConfig,
    DeviceSettings,
    TelemetrySample,
    decode_actuator_states,
    decode_battery_configs,
)


def test_telemetry_sample_accepts_either_voltage_key():
    streamed = TelemetrySample.from_payload({"roll": 1.0, "voltages": [11.1, 7.4]})
    polled = TelemetrySample.from_payload({"roll": 1.0, "batteries": [11.1, None]})

    assert streamed.voltages == (11.1, 7.4)
    assert polled.voltages == (11.1, None)


def test_telemetry_sample_treats_non_numbers_as_missing():
    sample = TelemetrySample.from_payload(
        {"roll": None, "pitch": "bad", "yaw": float("nan"), "verticalAccel": 0.98},
        captured_at=12.5,
    )

    assert sample.roll is None
    assert sample.pitch is None
    assert sample.yaw is None
    assert sample.vertical_accel == 0.98
    assert sample.captured_at == 12.5
    assert sample.as_dict()["verticalAccel"] == 0.98


def test_actuator_states_fill_missing_corners_with_defaults():
    states = decode_actuator_states(
        {"frontLeft": {"trim": 5, "min": 40, "max": 140, "reversed": 1}}
    )

    assert list(states) == [
        ActuatorKey.FRONT_LEFT,
        ActuatorKey.FRONT_RIGHT,
        ActuatorKey.REAR_LEFT,
        ActuatorKey.REAR_RIGHT,
    ]
    assert states[ActuatorKey.FRONT_LEFT] == ActuatorState(
        key=ActuatorKey.FRONT_LEFT, min=40, max=140, trim=5, reversed=True
    )
    assert states[ActuatorKey.REAR_RIGHT] == ActuatorState(key=ActuatorKey.REAR_RIGHT)


def test_battery_configs_from_device_shape():
    configs = decode_battery_configs(
        {
            "batteries": [
                {"name": "Main Drive", "cellCount": 4, "plugAssignment": 1, "showOnDashboard": True},
                {"name": "FPV", "cellCount": 2, "plugAssignment": 2, "showOnDashboard": 0},
            ]
        }
    )

    assert len(configs) == 3
    assert configs[0] == BatteryConfig("Main Drive", 4, 1, True)
    assert configs[1].show_on_dashboard is False
    assert configs[2] == BatteryConfig()


def test_battery_configs_from_keyed_object():
    configs = decode_battery_configs(
        {"battery1": {"name": "A"}, "3": {"showOnDashboard": 1}}
    )

    assert [item.name for item in configs] == ["A", "", ""]
    assert configs[2].show_on_dashboard is True


def test_battery_configs_from_garbage_yield_defaults():
    assert decode_battery_configs("nope") == [BatteryConfig()] * 3


def test_device_settings_resolves_defaults_once():
    settings = DeviceSettings.from_payload(
        {
            "reactionSpeed": 1.5,
            "damping": None,
            "servos": {"rearLeft": {"trim": -3}},
            "batteries": [{"name": "Main"}],
        }
    )

    assert settings.reaction_speed == 1.5
    assert settings.damping == 0.8
    assert settings.ride_height_offset == 90.0
    assert settings.servos[ActuatorKey.REAR_LEFT].trim == -3
    assert settings.servos[ActuatorKey.FRONT_LEFT].trim == 0
    assert settings.batteries[0].name == "Main"
    assert len(settings.batteries) == 3
