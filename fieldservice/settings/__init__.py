# fieldservice/settings/__init__.py

import os

settings_module = os.getenv('DJANGO_SETTINGS_MODULE', 'fieldservice.settings.local')

if 'cloud' in settings_module:
    from .cloud import *
elif settings_module.endswith('.test'):
    from .test import *
else:
    from .local import *
