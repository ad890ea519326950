"""College leave portal: leave applications, review workflow and reporting"""

__version__ = '1.0.0'


def create_app(config=None, client=None, mailer=None):
    from .app import create_app as _create_app
    return _create_app(config, client, mailer)
