from vpe.db.models import VMType
from vpe.db.store import ResourceStore
from vpe.exceptions import ConflictError
from vpe.utils import resource_file


class VMTypeService:
    @staticmethod
    def pool() -> list[dict]:
        return [t.to_dict() for t in ResourceStore.all(VMType)]

    @staticmethod
    def ask_id(name: str) -> int:
        return ResourceStore.get(VMType, name, by='name').id

    @staticmethod
    def info(type_id) -> dict:
        return ResourceStore.get(VMType, type_id).to_dict()

    @staticmethod
    def allocate(template) -> int:
        """
        Register a VM type from a template with NAME, CPU and MEMORY, and
        optionally DESCRIPTION and WEIGHT (quota units per VM, default 1).
        """
        type_def = resource_file.parse(template)
        name, cpu, memory = resource_file.require(type_def, 'NAME', 'CPU', 'MEMORY', where='VM Type file')
        if ResourceStore.find_by_name(VMType, name) is not None:
            raise ConflictError(f"VMType[{name}] already exists.", "VM_TYPE_EXISTS")

        vm_type = VMType(name=str(name), cpu=cpu, memory=memory,
                         weight=type_def.get('WEIGHT', 1),
                         description=type_def.get('DESCRIPTION'))
        return ResourceStore.save(vm_type).id

    @staticmethod
    def delete(type_id) -> int:
        vm_type = ResourceStore.get(VMType, type_id)
        ResourceStore.delete(vm_type)
        return int(type_id)
