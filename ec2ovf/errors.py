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

class Ec2OvfError(Exception):
    pass


class ValidationError(Ec2OvfError):
    pass


class ConfigError(Ec2OvfError):
    pass


class FetchError(Ec2OvfError):
    pass


class NotFoundError(FetchError):
    pass


class BuildError(Ec2OvfError):
    """The OVF tree is internally inconsistent or could not be serialized."""
    pass


class TransportError(Ec2OvfError):
    pass
