# Copyright (c) 2024 Broadcom.  All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the “License”); you may not
# use this file except in compliance with the License.  You may obtain a copy of
# the License at:
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software distributed
# under the License is distributed on an “AS IS” BASIS, without warranties or
# conditions of any kind, EITHER EXPRESS OR IMPLIED.  See the License for the
# specific language governing permissions and limitations under the License.

import yaml

from ec2ovf.errors import ConfigError
from ec2ovf.ovf import DEFAULT_SYSTEM_TYPE


DEFAULT_OVF_NAME = "vm.ovf"


class ConfigLoader(yaml.SafeLoader):
    pass


def yaml_param(loader, node):
    params = loader.app_params
    default = None
    key = node.value

    if type(key) is not str:
        raise ConfigError("param name must be a string")

    if '=' in key:
        key, default = [t.strip() for t in key.split('=', maxsplit=1)]
        default = yaml.safe_load(default)
    value = params.get(key, default)

    if value is None:
        raise ConfigError(f"no param set for '{key}', and there is no default")

    return value


ConfigLoader.add_constructor("!param", yaml_param)


class Config(object):

    def __init__(self, region=None, profile=None,
                 ovf_name=DEFAULT_OVF_NAME, system_type=DEFAULT_SYSTEM_TYPE):
        self.region = region
        self.profile = profile
        self.ovf_name = ovf_name
        self.system_type = system_type


    @classmethod
    def from_dict(cls, d):
        d = d or {}
        if not isinstance(d, dict):
            raise ConfigError("config must be a mapping")
        aws = d.get('aws') or {}
        ovf = d.get('ovf') or {}
        return cls(region=aws.get('region'),
                   profile=aws.get('profile'),
                   ovf_name=ovf.get('name', DEFAULT_OVF_NAME),
                   system_type=ovf.get('system_type', DEFAULT_SYSTEM_TYPE))


def load_yaml(f, params=None):
    loader = ConfigLoader(f)
    loader.app_params = params or {}
    try:
        return loader.get_single_data()
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config: {e}") from e
    finally:
        loader.dispose()


def load_config(config_file=None, params=None):
    if config_file is None:
        return Config()
    try:
        with open(config_file, 'r') as f:
            return Config.from_dict(load_yaml(f, params))
    except OSError as e:
        raise ConfigError(f"cannot read config file '{config_file}': {e}") from e
