"""
Tradfri Remote - пульт IKEA для двух настольных ламп.

Кнопка питания: если хоть одна лампа выключена - включить обе, иначе выключить.
Кнопки яркости: +/- одна ступень из пяти.
"""

from core.automation import Automation
from lib.helpers import bound


STEPS = 5
BRIGHTNESS_DELTA = 256 // STEPS

POWER_BUTTON = "automation.tradfri_remote_power_button"
DIM_UP_BUTTON = "automation.tradfri_remote_dim_up_button"
DIM_DOWN_BUTTON = "automation.tradfri_remote_dim_down_button"

LIGHTS = ["light.lynneals_desk", "light.declans_desk"]


class TradfriRemote(Automation):
    def __init__(self, runtime):
        super().__init__(runtime, "Tradfri Remote")

        self.on_automation_trigger(POWER_BUTTON, self.on_power)
        self.on_automation_trigger(DIM_UP_BUTTON, lambda: self.change_brightness(BRIGHTNESS_DELTA))
        self.on_automation_trigger(DIM_DOWN_BUTTON, lambda: self.change_brightness(-BRIGHTNESS_DELTA))

    async def on_power(self):
        states = [self.get_state(light).state for light in LIGHTS]
        for light in LIGHTS:
            if "off" in states:
                await self.light_turn_on(light)
            else:
                await self.light_turn_off(light)

    async def change_brightness(self, delta):
        for light in LIGHTS:
            current = self.get_state(light).attributes.get("brightness") or 0
            await self.light_turn_on(light, {"brightness": bound(0, 255, current + delta)})
