"""
Litter Box - напоминания о лотке.

Датчик движения у лотка включает input_boolean; кнопка сброса выключает его.
Пока флаг включён, телефоны получают persistent-уведомление каждые 30 минут.
"""

from core.automation import Automation


REMINDER_INTERVAL = 30 * 60
MOTION_RESET_DELAY = 3

LITTER_BOX_BOOLEAN = "input_boolean.litter_box"
MOTION_SENSOR_TRIGGER = "automation.litter_box_motion_sensor"
MOTION_SENSOR = "binary_sensor.litter_box_motion_sensor"
RESET_BUTTON_TRIGGER = "automation.litter_box_reset_button"

PHONES = ["mobile_app_s21", "mobile_app_lynn_s_s20_fe"]


class LitterBox(Automation):
    def __init__(self, runtime):
        super().__init__(runtime, "Litter Box")
        self._reminder = None

        self.on_automation_trigger(MOTION_SENSOR_TRIGGER, self.on_motion)
        self.on_automation_trigger(RESET_BUTTON_TRIGGER, self.on_reset)
        self.on_state_change(LITTER_BOX_BOOLEAN, self.on_litter_box_change)

    async def on_motion(self):
        await self.call_service("input_boolean", "turn_on", LITTER_BOX_BOOLEAN)

    async def on_reset(self):
        await self.call_service("input_boolean", "turn_off", LITTER_BOX_BOOLEAN)
        # Сбросить датчик движения сразу, но не мгновенно: человек ещё рядом
        self.set_timeout(self.reset_motion_sensor, MOTION_RESET_DELAY)

    async def reset_motion_sensor(self):
        await self.set_state(MOTION_SENSOR, {"state": "off"})

    async def on_litter_box_change(self, new_state, old_state):
        if new_state.state == "on":
            await self.send_notifications()
            if self._reminder is None:
                self._reminder = self.set_interval(self.send_notifications, REMINDER_INTERVAL)
        else:
            for phone in PHONES:
                await self.call_service("notify", phone, None, {
                    "message": "clear_notification",
                    "data": {"tag": "litter-box"},
                })
            if self._reminder is not None:
                self.clear_interval(self._reminder)
                self._reminder = None

    async def send_notifications(self):
        for phone in PHONES:
            await self.call_service("notify", phone, None, {
                "title": "Litter box",
                "message": "Litter box needs to be cleaned",
                "data": {"persistent": True, "tag": "litter-box"},
            })
