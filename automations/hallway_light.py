"""
Hallway Light - свет в коридоре как индикатор лотка.

Лоток нужно почистить → красный свет; почищен → тёплый белый и выключить.
"""

from core.automation import Automation


LITTER_BOX_BOOLEAN = "input_boolean.litter_box"
NOTIFICATION_LIGHT = "light.hallway_light"


class HallwayLight(Automation):
    def __init__(self, runtime):
        super().__init__(runtime, "Hallway Light")

        self.on_state_change(LITTER_BOX_BOOLEAN, self.on_input_change)

    async def on_input_change(self, new_state, old_state):
        if new_state.state == "on":
            await self.light_turn_on(NOTIFICATION_LIGHT, {"color_name": "red", "brightness": 150})
        else:
            await self.light_turn_on(NOTIFICATION_LIGHT, {"rgb_color": [255, 210, 130]})
            await self.light_turn_off(NOTIFICATION_LIGHT)
