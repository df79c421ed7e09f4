APP_NAME = "SerialpHa"
APP_VERSION = "v1.0.1"
