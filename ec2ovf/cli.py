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

import sys
import getopt
import yaml
from botocore.exceptions import BotoCoreError

from ec2ovf.aws import AwsClient
from ec2ovf.config import load_config
from ec2ovf.errors import Ec2OvfError, NotFoundError
from ec2ovf.ovf import OVF


APP_NAME = "ec2-ovf"


def usage():
    print(f"Usage: {APP_NAME} [-c <config file>] [--param key=value] [-r <region>] [-p <profile>] [-o <output file>] [-n] [-q] [-h] <export image task id>")
    print("")
    print("Options:")
    print("  -c, --config <file>         YAML config file")
    print("  --param key=value           set a value for a '!param' in the config file")
    print("  -r, --region <region>       AWS region (overrides config)")
    print("  -p, --profile <profile>     AWS profile (overrides config)")
    print("  -o, --output-file <file>    also write the OVF to a local file")
    print("  -n, --no-upload             do not upload the OVF to the export bucket")
    print("  -q                          quiet mode")
    print("  -h                          print help")
    print("")
    print("The OVF is printed to stdout and uploaded to <S3 prefix>vm.ovf in the")
    print("bucket of the export image task, next to the exported raw disks.")
    print("")
    print("Example usage:")
    print(f"  {APP_NAME} export-ami-0123456789abcdef0")


def fail(step, e):
    print(f"{APP_NAME}: {step}: {e}", file=sys.stderr)
    sys.exit(1)


def generate(client, task_id, config):
    """
    Fetch everything the export task refers to and build the OVF.
    Exits with an error message naming the failing step.
    """
    step = "export task"
    try:
        task = client.get_export_image_task(task_id)

        step = "image"
        image = client.get_image(task.image_id)
        if image.source_instance_id is None:
            raise NotFoundError(f"image {task.image_id} has no source instance")

        step = "instance"
        instance = client.get_instance(image.source_instance_id)

        step = "instance type"
        instance_type = client.get_instance_type(instance.instance_type)

        step = "build"
        ovf = OVF.from_ec2(task_id, instance, instance_type, image, system_type=config.system_type)
        data = ovf.to_string()
    except Ec2OvfError as e:
        fail(step, e)

    return task, ovf, data


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    config_file = None
    output_file = None
    region = None
    profile = None
    do_quiet = False
    do_upload = True
    params = {}

    try:
        opts, args = getopt.getopt(argv, 'c:hno:p:qr:', longopts=['config=', 'help', 'no-upload', 'output-file=', 'param=', 'profile=', 'region='])
    except getopt.GetoptError as e:
        print(f"{APP_NAME}: {e}", file=sys.stderr)
        sys.exit(2)

    for o, a in opts:
        if o in ['-c', '--config']:
            config_file = a
        elif o in ['-o', '--output-file']:
            output_file = a
        elif o in ['-r', '--region']:
            region = a
        elif o in ['-p', '--profile']:
            profile = a
        elif o in ['-n', '--no-upload']:
            do_upload = False
        elif o in ['--param']:
            if '=' not in a:
                print(f"{APP_NAME}: invalid param '{a}', expected key=value", file=sys.stderr)
                sys.exit(2)
            k, v = a.split('=', maxsplit=1)
            params[k] = yaml.safe_load(v)
        elif o in ['-q']:
            do_quiet = True
        elif o in ['-h', '--help']:
            usage()
            sys.exit(0)

    if len(args) != 1:
        print(f"{APP_NAME}: expected exactly one export image task id", file=sys.stderr)
        usage()
        sys.exit(2)
    task_id = args[0]

    try:
        config = load_config(config_file, params)
    except Ec2OvfError as e:
        fail("config", e)

    if region is not None:
        config.region = region
    if profile is not None:
        config.profile = profile

    try:
        client = AwsClient(region=config.region, profile=config.profile)
    except BotoCoreError as e:
        fail("aws", e)

    task, ovf, data = generate(client, task_id, config)

    if not do_quiet:
        for device in ovf.skipped_devices:
            print(f"warning: skipping block device '{device}', it is not backed by an EBS volume", file=sys.stderr)

    print(data, end="")

    if output_file is not None:
        try:
            ovf.write_xml(output_file)
        except (OSError, Ec2OvfError) as e:
            fail("write", e)

    if do_upload:
        key = task.ovf_key(config.ovf_name)
        try:
            client.upload_object(task.s3_bucket, key, data)
        except Ec2OvfError as e:
            fail("upload", e)
        if not do_quiet:
            print(f"uploaded s3://{task.s3_bucket}/{key}")

    if not do_quiet:
        print("done.")


if __name__ == "__main__":
    main()
