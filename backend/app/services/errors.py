class ServiceException(Exception):
    """Base for failures the API layer reports to the client."""

    status_code = 400


class BusinessRuleException(ServiceException):
    status_code = 400


class NotFoundException(ServiceException):
    status_code = 404


class PaymentGatewayException(ServiceException):
    status_code = 502


class ServiceUnavailableException(ServiceException):
    status_code = 503
