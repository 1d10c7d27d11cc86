from .settings import *

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

PAYSTACK_SECRET_KEY = 'sk_test_fake_key_for_testing'
PAYSTACK_BASE_URL = 'https://api.paystack.test'
PAYSTACK_MAX_RETRIES = 0
APP_BASE_URL = 'https://laundry.test'
