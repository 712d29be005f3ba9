from pydantic import BaseModel


class NotificationSettingsSchema(BaseModel):
    chat_id: int
    notif_system: bool = False
    notif_register: bool = False
    notif_availability: bool = False
    notif_plan: bool = False
    notif_conflict: bool = False

    class Config:
        from_attributes = True
        frozen = True

    def flags(self) -> dict:
        return self.model_dump(exclude={"chat_id"})
