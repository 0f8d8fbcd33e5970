from buddy.delivery.whatsapp import WhatsAppDelivery

__all__ = ["WhatsAppDelivery"]
