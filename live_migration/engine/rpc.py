"""
Engine RPC schema.

Message classes for the request/response protocol spoken by the engine's
service worker (``criu swrk``). Field names and numbers follow the engine's
rpc.proto; only the messages and fields this package uses are declared.
The schema is registered in a private descriptor pool so it never clashes
with another copy loaded in the same interpreter.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory


PACKAGE = "criu"

# criu_req_type
EMPTY = 0
DUMP = 1
RESTORE = 2
CHECK = 3
PRE_DUMP = 4
PAGE_SERVER = 5
NOTIFY = 6
CPUINFO_DUMP = 7
CPUINFO_CHECK = 8
FEATURE_CHECK = 9
VERSION = 10
WAIT_PID = 11
PAGE_SERVER_CHLD = 12
SINGLE_PRE_DUMP = 13
LAZY_PAGES = 14

REQUEST_TYPES = (
    ("EMPTY", EMPTY),
    ("DUMP", DUMP),
    ("RESTORE", RESTORE),
    ("CHECK", CHECK),
    ("PRE_DUMP", PRE_DUMP),
    ("PAGE_SERVER", PAGE_SERVER),
    ("NOTIFY", NOTIFY),
    ("CPUINFO_DUMP", CPUINFO_DUMP),
    ("CPUINFO_CHECK", CPUINFO_CHECK),
    ("FEATURE_CHECK", FEATURE_CHECK),
    ("VERSION", VERSION),
    ("WAIT_PID", WAIT_PID),
    ("PAGE_SERVER_CHLD", PAGE_SERVER_CHLD),
    ("SINGLE_PRE_DUMP", SINGLE_PRE_DUMP),
    ("LAZY_PAGES", LAZY_PAGES),
)

# (label, type, name, number)
MESSAGES = (
    ("criu_page_server_info", (
        ("optional", "string", "address", 1),
        ("optional", "int32", "port", 2),
        ("optional", "int32", "pid", 3),
        ("optional", "int32", "fd", 4),
    )),
    ("criu_opts", (
        ("optional", "int32", "images_dir_fd", 1),
        ("optional", "int32", "pid", 2),
        ("optional", "bool", "leave_running", 3),
        ("optional", "bool", "ext_unix_sk", 4),
        ("optional", "bool", "tcp_established", 5),
        ("optional", "bool", "shell_job", 7),
        ("optional", "bool", "file_locks", 8),
        ("optional", "int32", "log_level", 9),
        ("optional", "string", "log_file", 10),
        ("optional", "criu_page_server_info", "ps", 11),
        ("optional", "bool", "notify_scripts", 12),
        ("optional", "string", "parent_img", 14),
        ("optional", "bool", "track_mem", 15),
        ("optional", "int32", "work_dir_fd", 17),
        ("optional", "bool", "lazy_pages", 48),
    )),
    ("criu_dump_resp", (
        ("optional", "bool", "restored", 1),
    )),
    ("criu_restore_resp", (
        ("required", "int32", "pid", 1),
    )),
    ("criu_notify", (
        ("optional", "string", "script", 1),
        ("optional", "int32", "pid", 2),
    )),
    ("criu_req", (
        ("required", "criu_req_type", "type", 1),
        ("optional", "criu_opts", "opts", 2),
        ("optional", "bool", "notify_success", 3),
        ("optional", "bool", "keep_open", 4),
        ("optional", "uint32", "pid", 6),
    )),
    ("criu_resp", (
        ("required", "criu_req_type", "type", 1),
        ("required", "bool", "success", 2),
        ("optional", "criu_dump_resp", "dump", 3),
        ("optional", "criu_restore_resp", "restore", 4),
        ("optional", "criu_notify", "notify", 5),
        ("optional", "criu_page_server_info", "ps", 6),
        ("optional", "int32", "cr_errno", 7),
        ("optional", "string", "cr_errmsg", 9),
        ("optional", "int32", "status", 11),
    )),
)

_Field = descriptor_pb2.FieldDescriptorProto

_SCALARS = {
    "bool": _Field.TYPE_BOOL,
    "int32": _Field.TYPE_INT32,
    "uint32": _Field.TYPE_UINT32,
    "string": _Field.TYPE_STRING,
}

_LABELS = {
    "optional": _Field.LABEL_OPTIONAL,
    "required": _Field.LABEL_REQUIRED,
}


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(name="criu/rpc.proto", package=PACKAGE)

    enum_proto = file_proto.enum_type.add(name="criu_req_type")
    for name, number in REQUEST_TYPES:
        enum_proto.value.add(name=name, number=number)

    for message_name, fields in MESSAGES:
        message_proto = file_proto.message_type.add(name=message_name)
        for label, field_type, name, number in fields:
            field = message_proto.field.add(name=name, number=number, label=_LABELS[label])
            if field_type in _SCALARS:
                field.type = _SCALARS[field_type]
            elif field_type == "criu_req_type":
                field.type = _Field.TYPE_ENUM
                field.type_name = f".{PACKAGE}.{field_type}"
            else:
                field.type = _Field.TYPE_MESSAGE
                field.type_name = f".{PACKAGE}.{field_type}"

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


criu_page_server_info = _message_class("criu_page_server_info")
criu_opts = _message_class("criu_opts")
criu_dump_resp = _message_class("criu_dump_resp")
criu_restore_resp = _message_class("criu_restore_resp")
criu_notify = _message_class("criu_notify")
criu_req = _message_class("criu_req")
criu_resp = _message_class("criu_resp")
