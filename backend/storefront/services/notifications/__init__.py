"""
Order notification delivery.

- channels: e-mail (SES) and messaging webhook channels
- templates: Jinja2 rendering of notification copy
- gateway: failure-isolated delivery over the channels
- tasks: inline, background and Celery dispatch
"""
