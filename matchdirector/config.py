# SPDX-License-Identifier: GPL-2.0-or-later
"""Configuration loading for the director and its tools."""

import os
import os.path
import yaml

DEFAULT_CFG_DIR = '/etc/matchdirector'
LOADED_CONFIGS = {}


class ConfigReadError(Exception):
    pass


def load(profile):
    """Load (if needed) and return the configuration file for `profile`.

    Profile configurations are cached. Look for configuration profiles in the
    "CFG_DIR" environment variable if it is set, or in the DEFAULT_CFG_DIR
    otherwise. Raise a ConfigReadError if no such file exist or if it cannot
    be parsed.
    """

    try:
        return LOADED_CONFIGS[profile]
    except KeyError:
        pass

    cfg_filename = '{}.yml'.format(profile)
    cfg_directory = os.environ.get('CFG_DIR', DEFAULT_CFG_DIR)
    cfg_path = os.path.join(cfg_directory, cfg_filename)

    try:
        with open(cfg_path, 'r') as cfg_fp:
            cfg = yaml.safe_load(cfg_fp)
    except IOError:
        raise ConfigReadError("%s does not exist (specify CFG_DIR?)"
                              % cfg_path)
    except yaml.YAMLError as exn:
        raise ConfigReadError("%s is not valid YAML: %s" % (cfg_path, exn))

    LOADED_CONFIGS[profile] = cfg

    return cfg
