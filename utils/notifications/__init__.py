import logging

from .googlechat import GoogleChat

log = logging.getLogger("notifications")

SERVICES = {
    'googlechat': GoogleChat,
}


class Notifications:
    def __init__(self):
        self.services = []

    def load(self, **kwargs):
        if 'service' not in kwargs:
            log.error("You must specify a service to load with the service parameter")
            return False
        if kwargs['service'].lower() not in SERVICES:
            log.error(f"You specified an invalid service to load: {kwargs['service']}")
            return False

        service = SERVICES[kwargs.pop('service').lower()]
        self.services.append(service(**kwargs))
        return True

    def send(self, **kwargs):
        # remove service keyword if supplied
        if 'service' in kwargs:
            # send notification to specified service
            chosen_service = kwargs.pop('service').lower()
        else:
            chosen_service = None

        # send notification(s)
        for service in self.services:
            if chosen_service and service.NAME.lower() != chosen_service:
                continue
            elif service.send(**kwargs):
                log.info(f"Sent notification with {service.NAME}")
