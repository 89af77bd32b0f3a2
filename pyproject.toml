[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "thermofridge"
version = "0.1.0"
description = "HTTP and MQTT service that stores and relays the target and current state of a thermostat-controlled fridge"
requires-python = ">=3.10"
keywords = ["thermostat", "fridge", "mqtt", "home-automation", "wsgi", "metrics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Home Automation",
]
dependencies = [
    "paho-mqtt>=2.0",
    "werkzeug>=3.0",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
thermofridge = "thermofridge.app:main"

[tool.hatch.build.targets.wheel]
packages = ["thermofridge"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
